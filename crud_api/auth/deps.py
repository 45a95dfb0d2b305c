"""FastAPI dependencies for session-aware routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status

from ..db_models import as_utc, utc_now
from . import config
from .errors import TokenExpiredError, TokenInvalidError
from .models import AuthSession, AuthUser, SessionStatus, UserRole
from .sessions import SessionStore
from .tokens import ACCESS_PURPOSE, verify
from .users import UserStore

LOGGER = logging.getLogger(__name__)


@dataclass
class AuthenticatedSession:
    user: AuthUser
    session: AuthSession


def _extract_bearer(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, credential = header.partition(" ")
    if scheme.lower() == "bearer" and credential.strip():
        return credential.strip()
    return request.cookies.get(config.ACCESS_COOKIE_NAME) or None


def resolve_session(request: Request) -> Optional[AuthenticatedSession]:
    """Resolve the request's bearer credential to a live (user, session) pair.

    Any problem with the credential leaves the request unauthenticated; it is
    up to ``require_user`` to reject it. The result is cached on
    ``request.state``.
    """
    if hasattr(request.state, "auth"):
        return request.state.auth
    request.state.auth = None
    request.state.user = None
    request.state.session = None

    token = _extract_bearer(request)
    if not token:
        return None
    try:
        claims = verify(token, config.JWT_SECRET, purpose=ACCESS_PURPOSE)
    except (TokenInvalidError, TokenExpiredError) as exc:
        LOGGER.warning("Ignoring bearer credential (%s)", exc.kind.value)
        return None

    sessions = SessionStore()
    session = sessions.find_by_id(str(claims.get("sid") or ""))
    if session is None or session.status != SessionStatus.ACTIVE:
        return None
    if as_utc(session.expires_at) <= utc_now():
        return None
    user = UserStore().find_by_id(session.user_id)
    if user is None or user.id != claims.get("sub"):
        return None

    sessions.touch(session.id)
    principal = AuthenticatedSession(user=user, session=session)
    request.state.auth = principal
    request.state.user = user
    request.state.session = session
    return principal


def get_optional_session(request: Request) -> Optional[AuthenticatedSession]:
    return resolve_session(request)


def require_user(
    principal: Optional[AuthenticatedSession] = Depends(get_optional_session),
) -> AuthenticatedSession:
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return principal


def require_role(role: UserRole) -> Callable[..., AuthenticatedSession]:
    """Build a dependency that admits only users holding ``role``."""

    def _dependency(principal: AuthenticatedSession = Depends(require_user)) -> AuthenticatedSession:
        if principal.user.role != role:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return principal

    return _dependency
