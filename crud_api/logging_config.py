"""Logging configuration helpers for the API service.

Request-scoped fields (request id, OAuth provider, session id) live in
context variables and are stamped onto every record by ``RequestContextFilter``,
so services log through plain module loggers without passing a logger around.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from logging.config import dictConfig
from typing import Dict, Iterator, Optional

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
provider_var: ContextVar[str] = ContextVar("provider", default="-")
session_id_var: ContextVar[str] = ContextVar("session_id", default="-")

_FIELDS: Dict[str, ContextVar[str]] = {
    "request_id": request_id_var,
    "provider": provider_var,
    "session_id": session_id_var,
}


class RequestContextFilter(logging.Filter):
    """Copy the current request-scoped fields onto each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _FIELDS.items():
            if not hasattr(record, name):
                setattr(record, name, var.get())
        return True


@contextmanager
def log_context(
    *,
    request_id: Optional[str] = None,
    provider: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Iterator[None]:
    """Bind request-scoped log fields for the duration of the block."""
    values = {"request_id": request_id, "provider": provider, "session_id": session_id}
    tokens = [(_FIELDS[name], _FIELDS[name].set(value)) for name, value in values.items() if value]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging() -> None:
    """Apply a consistent logging configuration for the API service."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_context": {"()": RequestContextFilter},
            },
            "formatters": {
                "standard": {
                    "format": (
                        "%(asctime)s %(levelname)s [%(name)s] "
                        "[req=%(request_id)s provider=%(provider)s session=%(session_id)s] %(message)s"
                    ),
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "filters": ["request_context"],
                    "level": log_level,
                },
            },
            "root": {"handlers": ["console"], "level": log_level},
            # Ensure uvicorn loggers inherit our formatting.
            "loggers": {
                "uvicorn": {"handlers": ["console"], "level": log_level, "propagate": False},
                "uvicorn.error": {
                    "handlers": ["console"],
                    "level": log_level,
                    "propagate": False,
                },
                "uvicorn.access": {
                    "handlers": ["console"],
                    "level": os.getenv("UVICORN_ACCESS_LOG_LEVEL", "INFO").upper(),
                    "propagate": False,
                },
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured at %s level", log_level)
