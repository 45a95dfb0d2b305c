"""FastAPI application for the CRUD API template."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import db
from .auth import auth_router, oauth_router
from .auth.config import validate_settings
from .auth.registry import get_provider_registry
from .config import API_ALLOWED_ORIGINS, API_HOST, API_PORT
from .logging_config import configure_logging, request_id_var
from .routes import router

configure_logging()
LOGGER = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Validate secrets, open the database and load providers before serving."""
    LOGGER.info("CRUD API startup")
    validate_settings()
    if not db.is_initialized():
        db.init_engine()
    db.connect()
    db.init_database()
    get_provider_registry()
    try:
        yield
    finally:
        db.close_engine()
        LOGGER.info("CRUD API shutdown complete")


app = FastAPI(
    title="CRUD API",
    version="1.0.0",
    description="CRUD API template with OAuth sign-in and server-side sessions.",
    lifespan=lifespan,
)

# A wildcard origin cannot be combined with credentialed requests.
app.add_middleware(
    CORSMiddleware,
    allow_origins=API_ALLOWED_ORIGINS,
    allow_credentials="*" not in API_ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    """Propagate or mint a request id and expose it to log records."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app.include_router(oauth_router)
app.include_router(auth_router)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    LOGGER.info("Launching Uvicorn development server on %s:%s", API_HOST, API_PORT)
    uvicorn.run("crud_api.app:app", host=API_HOST, port=API_PORT, reload=True)
