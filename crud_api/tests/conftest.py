"""Shared fixtures for the CRUD API test suite."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import List, Optional

import pytest

from crud_api import db
from crud_api.auth import config as auth_config
from crud_api.auth import oauth as oauth_module
from crud_api.auth import registry as registry_module
from crud_api.auth import token_service as token_service_module
from crud_api.auth.crypto import encrypt
from crud_api.auth.errors import TokenExchangeError
from crud_api.auth.providers import OAuthProvider, ProviderTokenResponse, ProviderUserInfo
from crud_api.auth.registry import ProviderRegistry, set_provider_registry
from crud_api.auth.sessions import NewSession, SessionStore
from crud_api.auth.users import UserProfile, UserStore
from crud_api.db_models import utc_now

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
TEST_JWT_SECRET = "unit-test-jwt-secret-with-enough-length"


class FakeProvider(OAuthProvider):
    """In-memory provider that records every call."""

    def __init__(self) -> None:
        self.token_response = ProviderTokenResponse(
            access_token="at1", refresh_token="rt1", expires_in=3600
        )
        self.refresh_response = ProviderTokenResponse(access_token="at2", expires_in=3600)
        self.user_info = ProviderUserInfo(id="g-123", email="a@x.com", given_name="A")
        self.refresh_error: Optional[Exception] = None
        self.exchange_error: Optional[Exception] = None
        self.exchanged_codes: List[str] = []
        self.refreshed_tokens: List[str] = []

    @property
    def provider_id(self) -> str:
        return "google"

    def default_scopes(self) -> List[str]:
        return ["openid", "email", "profile"]

    def authorization_url(self, state: str) -> str:
        return f"https://provider.test/auth?state={state}"

    async def exchange_code_for_token(self, code: str) -> ProviderTokenResponse:
        self.exchanged_codes.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.token_response

    async def refresh_access_token(self, refresh_token: str) -> ProviderTokenResponse:
        self.refreshed_tokens.append(refresh_token)
        # Yield so concurrent callers can interleave.
        await asyncio.sleep(0)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_response

    async def get_user_info(self, access_token: str) -> ProviderUserInfo:
        return self.user_info


@pytest.fixture(autouse=True)
def auth_settings(monkeypatch):
    monkeypatch.setattr(auth_config, "ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setattr(auth_config, "JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setattr(auth_config, "SESSION_COOKIE_SECURE", False)
    monkeypatch.setattr(oauth_module, "_OAUTH_SERVICE", None)
    monkeypatch.setattr(token_service_module, "_TOKEN_SERVICE", None)
    monkeypatch.setattr(registry_module, "_registry", None)


@pytest.fixture
def database():
    engine = db.init_engine("sqlite://")
    db.init_database()
    yield engine
    db.close_engine()


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(fake_provider):
    registry = ProviderRegistry()
    registry.register("google", lambda: fake_provider)
    set_provider_registry(registry)
    yield registry
    set_provider_registry(None)


@pytest.fixture
def make_session(database):
    """Insert a user and an active session with the given provider token lifetimes."""

    def _make(
        *,
        access_token: str = "at1",
        refresh_token: str = "rt1",
        access_expires_in: timedelta = timedelta(hours=1),
        refresh_expires_in: timedelta = timedelta(days=90),
        provider_account_id: str = "g-123",
        email: str = "a@x.com",
    ):
        now = utc_now()
        with db.session_scope() as tx:
            user = UserStore().upsert_by_provider_account_id(
                UserProfile(email=email, first_name="A", provider_account_id=provider_account_id),
                tx=tx,
            )
            session = SessionStore().create(
                NewSession(
                    user_id=user.id,
                    provider="google",
                    provider_account_id=provider_account_id,
                    access_token=encrypt(access_token, TEST_ENCRYPTION_KEY),
                    access_token_expires_at=now + access_expires_in,
                    refresh_token=encrypt(refresh_token, TEST_ENCRYPTION_KEY),
                    refresh_token_expires_at=now + refresh_expires_in,
                    scope="openid email profile",
                    expires_at=now + refresh_expires_in,
                ),
                tx=tx,
            )
        return user, session

    return _make


@pytest.fixture
def rejected_refresh() -> TokenExchangeError:
    return TokenExchangeError(
        "Google token refresh failed", provider_id="google", status_code=400, error_code="invalid_grant"
    )
