"""Provider token lifecycle: expiry checks, refresh and terminal transitions.

Session status moves one way only::

    active --refresh ok------------> active (tokens rotated in place)
    active --refresh token expired-> expired
    active --provider refresh fails-> revoked

Refreshes of one session inside this process are serialized by a
per-session ``asyncio.Lock``. Across processes the last write wins.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..db_models import as_utc, utc_now
from ..logging_config import log_context
from . import config
from .crypto import decrypt, encrypt
from .errors import (
    RefreshTokenExpiredError,
    SessionNotActiveError,
    SessionNotFoundError,
    TokenExchangeError,
)
from .models import AuthSession, SessionStatus
from .registry import ProviderRegistry, get_provider_registry
from .sessions import SessionStore

LOGGER = logging.getLogger(__name__)


@dataclass
class TokenRefreshResult:
    access_token: str
    access_token_expires_at: datetime
    refresh_token: Optional[str] = None
    refresh_token_expires_at: Optional[datetime] = None


class TokenService:
    """Hands out valid provider access tokens, refreshing them when needed."""

    def __init__(
        self,
        *,
        registry: Optional[ProviderRegistry] = None,
        sessions: Optional[SessionStore] = None,
        encryption_key: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._sessions = sessions or SessionStore()
        self._encryption_key = encryption_key
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry or get_provider_registry()

    @property
    def encryption_key(self) -> str:
        return self._encryption_key or config.ENCRYPTION_KEY

    def is_access_token_expired(self, session: AuthSession, now: Optional[datetime] = None) -> bool:
        """True when the access token expires within the refresh buffer."""
        moment = now or self._clock()
        buffer = timedelta(seconds=config.ACCESS_TOKEN_REFRESH_BUFFER_SECONDS)
        return moment + buffer >= as_utc(session.provider_access_token_expires_at)

    def is_refresh_token_expired(self, session: AuthSession, now: Optional[datetime] = None) -> bool:
        moment = now or self._clock()
        return moment >= as_utc(session.provider_refresh_token_expires_at)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _load_active(self, session_id: str, tx: Optional[Session] = None) -> AuthSession:
        session = self._sessions.find_by_id(session_id, tx=tx)
        if session is None:
            raise SessionNotFoundError()
        if session.status != SessionStatus.ACTIVE:
            raise SessionNotActiveError()
        return session

    def _decrypt_access_token(self, session: AuthSession) -> str:
        return decrypt(
            session.provider_access_token,
            session.provider_access_token_iv,
            session.provider_access_token_tag,
            self.encryption_key,
        )

    async def get_valid_access_token(self, session_id: str) -> str:
        """Return a provider access token that is good for at least the buffer window.

        Raises:
            SessionNotFoundError: No such session.
            SessionNotActiveError: The session is revoked or expired.
            RefreshTokenExpiredError: A refresh was needed but the refresh token lapsed.
            TokenExchangeError: The provider rejected the refresh; the session is now revoked.
        """
        session = self._load_active(session_id)
        if not self.is_access_token_expired(session):
            return self._decrypt_access_token(session)

        async with self._lock_for(session_id):
            # Another coroutine may have refreshed while we waited.
            session = self._load_active(session_id)
            if not self.is_access_token_expired(session):
                return self._decrypt_access_token(session)
            result = await self._refresh(session_id)
        return result.access_token

    async def refresh_access_token(
        self,
        session_id: str,
        *,
        tx: Optional[Session] = None,
    ) -> TokenRefreshResult:
        """Exchange the stored refresh token for a new access token and persist it.

        The token update joins ``tx`` when given. The terminal ``expired`` and
        ``revoked`` transitions are committed in their own transaction so the
        caller rolling back on the re-raised error cannot undo them.

        Raises:
            SessionNotFoundError: No such session.
            SessionNotActiveError: The session is revoked or expired.
            RefreshTokenExpiredError: The refresh token lapsed; the session is now expired.
            TokenExchangeError: The provider call failed; the session is now revoked.
            IntegrityError: The stored refresh token failed to decrypt.
        """
        async with self._lock_for(session_id):
            return await self._refresh(session_id, tx=tx)

    async def _refresh(self, session_id: str, *, tx: Optional[Session] = None) -> TokenRefreshResult:
        with log_context(session_id=session_id):
            session = self._load_active(session_id, tx)
            if self.is_refresh_token_expired(session):
                self._sessions.mark_expired(session_id)
                LOGGER.info("Refresh token expired; session requires re-authentication")
                raise RefreshTokenExpiredError()

            provider = self.registry.get_provider(session.provider)
            refresh_token = decrypt(
                session.provider_refresh_token,
                session.provider_refresh_token_iv,
                session.provider_refresh_token_tag,
                self.encryption_key,
            )

            try:
                tokens = await provider.refresh_access_token(refresh_token)
                if not tokens.access_token:
                    raise TokenExchangeError(
                        "No access token received from provider", provider_id=session.provider
                    )
            except Exception as exc:
                # Any refresh failure ends the session; the user must sign in again.
                self._sessions.revoke(session_id, now=self._clock())
                LOGGER.error(
                    "Token refresh failed for provider %s (status=%s, error=%s); session revoked",
                    session.provider,
                    getattr(exc, "status_code", None),
                    getattr(exc, "error_code", None) or exc.__class__.__name__,
                )
                raise

            now = self._clock()
            access_ttl = tokens.expires_in or config.PROVIDER_ACCESS_TOKEN_DEFAULT_SECONDS
            access_expires_at = now + timedelta(seconds=access_ttl)
            refresh_expires_at: Optional[datetime] = None
            if tokens.refresh_token_expires_in:
                refresh_expires_at = now + timedelta(seconds=tokens.refresh_token_expires_in)
            elif tokens.refresh_token:
                refresh_expires_at = as_utc(session.provider_refresh_token_expires_at)

            updated = self._sessions.update_tokens(
                session_id,
                access_token=encrypt(tokens.access_token, self.encryption_key),
                access_token_expires_at=access_expires_at,
                refresh_token=(
                    encrypt(tokens.refresh_token, self.encryption_key) if tokens.refresh_token else None
                ),
                refresh_token_expires_at=refresh_expires_at,
                scope=tokens.scope,
                tx=tx,
            )
            if updated is None:
                # Revoked (e.g. logout) while the provider call was in flight.
                raise SessionNotActiveError()

            LOGGER.info("Provider access token refreshed")
            return TokenRefreshResult(
                access_token=tokens.access_token,
                access_token_expires_at=access_expires_at,
                refresh_token=tokens.refresh_token,
                refresh_token_expires_at=refresh_expires_at,
            )


_TOKEN_SERVICE: Optional[TokenService] = None


def get_token_service() -> TokenService:
    global _TOKEN_SERVICE
    if _TOKEN_SERVICE is None:
        _TOKEN_SERVICE = TokenService()
    return _TOKEN_SERVICE
