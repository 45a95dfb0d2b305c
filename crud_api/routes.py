"""API routes for the CRUD API template outside the auth flows."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from .auth.deps import AuthenticatedSession, require_role
from .auth.models import UserRole
from .auth.schemas import serialize_user
from .auth.users import UserStore
from .health import check_database_health, check_provider_health
from .models import ApiResponse, Pagination, UserList

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def resolve_user_store() -> UserStore:
    return UserStore()


@router.get("/v1/users", response_model=ApiResponse[UserList], tags=["users"])
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: AuthenticatedSession = Depends(require_role(UserRole.ADMIN)),
    users: UserStore = Depends(resolve_user_store),
) -> ApiResponse[UserList]:
    """Return one page of users. Admin only."""
    rows, total = users.list_users(page=page, limit=limit)
    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
    return ApiResponse(
        message="Users retrieved",
        payload=UserList(users=[serialize_user(row) for row in rows], pagination=pagination),
    )


@router.get("/health", tags=["health"])
def healthcheck() -> JSONResponse:
    """Report service health.

    Returns:
        JSONResponse: 200 when the database answers, 503 otherwise. The
        provider check is informational and never fails the response.
    """
    database = check_database_health(interval_seconds=0.5, timeout_seconds=1.0)
    providers = check_provider_health()
    body: Dict[str, Any] = {
        "status": "ok" if database.ok else "degraded",
        "checks": {"database": database.to_dict(), "providers": providers.to_dict()},
    }
    for result in (database, providers):
        if not result.ok:
            LOGGER.warning("Health check %s failed: %s", result.service, result.detail)
    return JSONResponse(status_code=200 if database.ok else 503, content=body)
