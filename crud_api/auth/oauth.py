"""OAuth login orchestration: code exchange, identity sync and session creation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError as DBIntegrityError

from ..db import session_scope
from ..db_models import utc_now
from ..logging_config import log_context
from . import config
from .crypto import encrypt
from .errors import (
    AuthError,
    AuthErrorKind,
    IdentityConflictError,
    IncompleteUserInfoError,
    MissingRefreshTokenError,
    TokenExchangeError,
)
from .models import AuthSession, AuthUser
from .providers import OAuthProvider, ProviderTokenResponse, ProviderUserInfo
from .registry import ProviderRegistry, get_provider_registry
from .sessions import NewSession, SessionStore
from .users import UserProfile, UserStore

LOGGER = logging.getLogger(__name__)

# One retry after a unique-constraint race; the second loss is surfaced as a conflict.
MAX_PERSIST_ATTEMPTS = 2


@dataclass
class CallbackResult:
    user: AuthUser
    session: AuthSession


class OAuthService:
    """Turns an authorization code into a linked user and a fresh session."""

    def __init__(
        self,
        *,
        registry: Optional[ProviderRegistry] = None,
        users: Optional[UserStore] = None,
        sessions: Optional[SessionStore] = None,
        encryption_key: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._users = users or UserStore()
        self._sessions = sessions or SessionStore()
        self._encryption_key = encryption_key
        self._clock = clock

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry or get_provider_registry()

    @property
    def encryption_key(self) -> str:
        return self._encryption_key or config.ENCRYPTION_KEY

    def get_authorization_url(self, provider_id: str, state: str) -> str:
        return self.registry.get_provider(provider_id).authorization_url(state)

    async def handle_callback(
        self,
        provider_id: str,
        code: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CallbackResult:
        """Complete a login for ``provider_id`` with an authorization code.

        The user upsert and session insert share one transaction; any failure
        rolls back both.

        Raises:
            UnsupportedProviderError: ``provider_id`` is not registered.
            TokenExchangeError: The provider returned no access token or failed.
            MissingRefreshTokenError: The provider returned no refresh token.
            UserInfoError: The profile could not be fetched.
            IncompleteUserInfoError: The profile lacks a subject id or email.
            IdentityConflictError: A concurrent login for the same identity won twice.
            EmailInUseError: The new email belongs to another active user.
        """
        with log_context(provider=provider_id):
            try:
                provider = self.registry.get_provider(provider_id)
                tokens = await provider.exchange_code_for_token(code)
                if not tokens.access_token:
                    raise TokenExchangeError(
                        "No access token received from provider", provider_id=provider_id
                    )
                if not tokens.refresh_token:
                    raise MissingRefreshTokenError(provider_id=provider_id)

                user_info = await provider.get_user_info(tokens.access_token)
                if not user_info.id or not user_info.email:
                    raise IncompleteUserInfoError(provider_id=provider_id)

                result = self._persist_login(provider, tokens, user_info, metadata or {})
            except AuthError as exc:
                log = LOGGER.error if exc.kind is AuthErrorKind.UPSTREAM else LOGGER.warning
                log("OAuth callback failed for %s: %s (%s)", provider_id, exc, exc.kind.value)
                raise
            except Exception:
                LOGGER.exception("OAuth callback failed for %s", provider_id)
                raise

        LOGGER.info("OAuth login for user %s created session %s", result.user.id, result.session.id)
        return result

    def _persist_login(
        self,
        provider: OAuthProvider,
        tokens: ProviderTokenResponse,
        user_info: ProviderUserInfo,
        metadata: Dict[str, Any],
    ) -> CallbackResult:
        profile = UserProfile(
            email=user_info.email,
            first_name=user_info.first_name,
            last_name=user_info.last_name,
            avatar=user_info.picture,
            provider_account_id=user_info.id,
        )
        conflict: Optional[DBIntegrityError] = None
        for attempt in range(1, MAX_PERSIST_ATTEMPTS + 1):
            try:
                with session_scope() as tx:
                    user = self._users.upsert_by_provider_account_id(profile, tx=tx)
                    session = self._sessions.create(
                        self._new_session(provider, tokens, user, metadata), tx=tx
                    )
                return CallbackResult(user=user, session=session)
            except DBIntegrityError as exc:
                conflict = exc
                LOGGER.warning("Concurrent login for the same identity (attempt %d)", attempt)
        raise IdentityConflictError() from conflict

    def _new_session(
        self,
        provider: OAuthProvider,
        tokens: ProviderTokenResponse,
        user: AuthUser,
        metadata: Dict[str, Any],
    ) -> NewSession:
        now = self._clock()
        access_ttl = tokens.expires_in or config.PROVIDER_ACCESS_TOKEN_DEFAULT_SECONDS
        refresh_ttl = (
            tokens.refresh_token_expires_in or config.PROVIDER_REFRESH_TOKEN_DEFAULT_SECONDS
        )
        refresh_expires_at = now + timedelta(seconds=refresh_ttl)
        return NewSession(
            user_id=user.id,
            provider=provider.provider_id,
            provider_account_id=user.provider_account_id,
            access_token=encrypt(tokens.access_token, self.encryption_key),
            access_token_expires_at=now + timedelta(seconds=access_ttl),
            refresh_token=encrypt(tokens.refresh_token, self.encryption_key),
            refresh_token_expires_at=refresh_expires_at,
            scope=tokens.scope or " ".join(provider.default_scopes()),
            expires_at=refresh_expires_at,
            metadata=metadata,
        )


_OAUTH_SERVICE: Optional[OAuthService] = None


def get_oauth_service() -> OAuthService:
    global _OAUTH_SERVICE
    if _OAUTH_SERVICE is None:
        _OAUTH_SERVICE = OAuthService()
    return _OAUTH_SERVICE
