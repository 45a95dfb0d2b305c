"""Cookie helpers for browser sessions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import Response

from . import config


def _max_age(target: datetime) -> int:
    now = datetime.now(timezone.utc)
    delta = int((target - now).total_seconds())
    return max(delta, 60)


def _set_cookie(response: Response, key: str, value: str, expires_at: datetime) -> None:
    response.set_cookie(
        key=key,
        value=value,
        domain=config.SESSION_COOKIE_DOMAIN,
        path=config.SESSION_COOKIE_PATH,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite=config.SESSION_COOKIE_SAMESITE,
        max_age=_max_age(expires_at),
    )


def attach_session_cookies(
    response: Response,
    *,
    access_token: str,
    access_token_expires_at: datetime,
    refresh_token: Optional[str] = None,
    refresh_token_expires_at: Optional[datetime] = None,
) -> None:
    _set_cookie(response, config.ACCESS_COOKIE_NAME, access_token, access_token_expires_at)
    if refresh_token and refresh_token_expires_at:
        _set_cookie(response, config.REFRESH_COOKIE_NAME, refresh_token, refresh_token_expires_at)


def clear_session_cookies(response: Response) -> None:
    for cookie_name in (config.ACCESS_COOKIE_NAME, config.REFRESH_COOKIE_NAME):
        response.delete_cookie(
            key=cookie_name,
            domain=config.SESSION_COOKIE_DOMAIN,
            path=config.SESSION_COOKIE_PATH,
        )
