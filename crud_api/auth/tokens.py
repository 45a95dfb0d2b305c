"""Signed, time-limited tokens for CSRF state and the service's bearer credentials."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from . import config
from .crypto import generate_state_token
from .errors import TokenExpiredError, TokenInvalidError

PURPOSE_CLAIM = "typ"
STATE_PURPOSE = "state"
ACCESS_PURPOSE = "access"
REFRESH_PURPOSE = "refresh"


@dataclass
class SessionCredentials:
    access_token: str
    access_token_expires_at: datetime
    refresh_token: str
    refresh_token_expires_at: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


def sign(
    payload: Dict[str, Any],
    secret: str,
    *,
    expires_in: int,
    purpose: Optional[str] = None,
) -> str:
    """Sign ``payload`` as an HS256 JWT that expires ``expires_in`` seconds from now."""
    issued_at = _now()
    claims = dict(payload)
    claims["iat"] = int(issued_at.timestamp())
    claims["exp"] = int((issued_at + timedelta(seconds=expires_in)).timestamp())
    if purpose:
        claims[PURPOSE_CLAIM] = purpose
    return jwt.encode(claims, secret, algorithm=config.JWT_ALGORITHM)


def verify(token: str, secret: str, *, purpose: Optional[str] = None) -> Dict[str, Any]:
    """Return the claims of a valid token.

    Raises:
        TokenExpiredError: The ``exp`` claim is in the past.
        TokenInvalidError: Bad signature, malformed token or a purpose other
            than the one requested.
    """
    if not token:
        raise TokenInvalidError("Token is empty")
    try:
        claims = jwt.decode(token, secret, algorithms=[config.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError() from exc
    except JWTError as exc:
        raise TokenInvalidError() from exc
    if purpose is not None and claims.get(PURPOSE_CLAIM) != purpose:
        raise TokenInvalidError("Token was issued for a different purpose")
    return claims


def issue_state_token(redirect: bool) -> str:
    payload = {"state": generate_state_token(), "redirect": "true" if redirect else "false"}
    return sign(
        payload,
        config.JWT_SECRET,
        expires_in=config.STATE_TOKEN_TTL_SECONDS,
        purpose=STATE_PURPOSE,
    )


def verify_state_token(token: str) -> Dict[str, Any]:
    return verify(token, config.JWT_SECRET, purpose=STATE_PURPOSE)


def issue_access_token(user_id: str, session_id: str) -> tuple[str, datetime]:
    token = sign(
        {"sub": user_id, "sid": session_id},
        config.JWT_SECRET,
        expires_in=config.ACCESS_TOKEN_TTL_SECONDS,
        purpose=ACCESS_PURPOSE,
    )
    return token, _now() + timedelta(seconds=config.ACCESS_TOKEN_TTL_SECONDS)


def issue_refresh_token(user_id: str, session_id: str) -> tuple[str, datetime]:
    token = sign(
        {"sub": user_id, "sid": session_id},
        config.JWT_SECRET,
        expires_in=config.REFRESH_TOKEN_TTL_SECONDS,
        purpose=REFRESH_PURPOSE,
    )
    return token, _now() + timedelta(seconds=config.REFRESH_TOKEN_TTL_SECONDS)


def issue_session_credentials(user_id: str, session_id: str) -> SessionCredentials:
    """Mint the bearer access and refresh credentials handed to a client after login."""
    access_token, access_expires_at = issue_access_token(user_id, session_id)
    refresh_token, refresh_expires_at = issue_refresh_token(user_id, session_id)
    return SessionCredentials(
        access_token=access_token,
        access_token_expires_at=access_expires_at,
        refresh_token=refresh_token,
        refresh_token_expires_at=refresh_expires_at,
    )
