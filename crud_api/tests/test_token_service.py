"""Tests for the provider token lifecycle manager."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from crud_api import db
from crud_api.auth import config
from crud_api.auth.crypto import decrypt
from crud_api.auth.errors import (
    IntegrityError,
    RefreshTokenExpiredError,
    SessionNotActiveError,
    SessionNotFoundError,
    TokenExchangeError,
)
from crud_api.auth.models import AuthSession, SessionStatus
from crud_api.auth.providers import ProviderTokenResponse
from crud_api.auth.sessions import SessionStore
from crud_api.auth.token_service import TokenService
from crud_api.db_models import as_utc

NOW = datetime(2024, 8, 1, 12, 0, tzinfo=timezone.utc)


def _stored_refresh_token(session_id: str) -> str:
    session = SessionStore().find_by_id(session_id)
    return decrypt(
        session.provider_refresh_token,
        session.provider_refresh_token_iv,
        session.provider_refresh_token_tag,
        config.ENCRYPTION_KEY,
    )


@pytest.fixture
def service(database, registry) -> TokenService:
    return TokenService()


class TestExpiryChecks:
    @pytest.mark.parametrize(
        "remaining, expected",
        [
            (timedelta(minutes=4), True),
            (timedelta(minutes=5), True),
            (timedelta(minutes=6), False),
            (timedelta(seconds=-1), True),
        ],
    )
    def test_access_token_refresh_buffer(self, remaining, expected):
        session = AuthSession(provider_access_token_expires_at=NOW + remaining)

        assert TokenService().is_access_token_expired(session, now=NOW) is expected

    @pytest.mark.parametrize(
        "remaining, expected",
        [
            (timedelta(seconds=1), False),
            (timedelta(0), True),
            (timedelta(seconds=-1), True),
        ],
    )
    def test_refresh_token_expiry(self, remaining, expected):
        session = AuthSession(provider_refresh_token_expires_at=NOW + remaining)

        assert TokenService().is_refresh_token_expired(session, now=NOW) is expected

    def test_naive_timestamps_are_treated_as_utc(self):
        session = AuthSession(provider_access_token_expires_at=(NOW + timedelta(minutes=6)).replace(tzinfo=None))

        assert TokenService().is_access_token_expired(session, now=NOW) is False


class TestGetValidAccessToken:
    @pytest.mark.asyncio
    async def test_fresh_token_is_returned_without_network(self, service, fake_provider, make_session):
        _, session = make_session(access_expires_in=timedelta(minutes=30))

        assert await service.get_valid_access_token(session.id) == "at1"
        assert fake_provider.refreshed_tokens == []

    @pytest.mark.asyncio
    async def test_stale_token_is_refreshed_and_persisted(self, service, fake_provider, make_session):
        _, session = make_session(access_expires_in=timedelta(minutes=4))

        assert await service.get_valid_access_token(session.id) == "at2"
        assert fake_provider.refreshed_tokens == ["rt1"]
        # Served from storage now.
        assert await service.get_valid_access_token(session.id) == "at2"
        assert fake_provider.refreshed_tokens == ["rt1"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, service, fake_provider, make_session):
        _, session = make_session(access_expires_in=timedelta(minutes=1))

        results = await asyncio.gather(
            service.get_valid_access_token(session.id),
            service.get_valid_access_token(session.id),
            service.get_valid_access_token(session.id),
        )

        assert results == ["at2", "at2", "at2"]
        assert fake_provider.refreshed_tokens == ["rt1"]

    @pytest.mark.asyncio
    async def test_missing_session(self, service):
        with pytest.raises(SessionNotFoundError):
            await service.get_valid_access_token("does-not-exist")

    @pytest.mark.asyncio
    async def test_revoked_session_stays_revoked(self, service, fake_provider, make_session):
        _, session = make_session()
        SessionStore().revoke(session.id)

        with pytest.raises(SessionNotActiveError):
            await service.get_valid_access_token(session.id)
        with pytest.raises(SessionNotActiveError):
            await service.refresh_access_token(session.id)

        assert SessionStore().find_by_id(session.id).status == SessionStatus.REVOKED
        assert fake_provider.refreshed_tokens == []


class TestRefreshAccessToken:
    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_provider_does_not_rotate(
        self, service, make_session
    ):
        _, session = make_session()

        result = await service.refresh_access_token(session.id)

        assert result.access_token == "at2"
        assert result.refresh_token is None
        assert result.refresh_token_expires_at is None
        assert _stored_refresh_token(session.id) == "rt1"
        assert SessionStore().find_by_id(session.id).status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_refresh_stores_rotated_refresh_token(self, service, fake_provider, make_session):
        _, session = make_session()
        fake_provider.refresh_response = ProviderTokenResponse(
            access_token="at2", refresh_token="rt2", expires_in=1800, refresh_token_expires_in=86400
        )

        result = await service.refresh_access_token(session.id)

        assert result.refresh_token == "rt2"
        assert _stored_refresh_token(session.id) == "rt2"
        stored = SessionStore().find_by_id(session.id)
        assert as_utc(stored.provider_refresh_token_expires_at) == result.refresh_token_expires_at
        assert as_utc(stored.provider_access_token_expires_at) == result.access_token_expires_at

    @pytest.mark.asyncio
    async def test_provider_rejection_revokes_session(
        self, service, fake_provider, make_session, rejected_refresh
    ):
        _, session = make_session(access_expires_in=timedelta(minutes=1))
        fake_provider.refresh_error = rejected_refresh

        with pytest.raises(TokenExchangeError) as exc_info:
            await service.refresh_access_token(session.id)

        assert exc_info.value is rejected_refresh
        stored = SessionStore().find_by_id(session.id)
        assert stored.status == SessionStatus.REVOKED
        assert stored.revoked_at is not None

        # Terminal: a later call never reaches the provider again.
        with pytest.raises(SessionNotActiveError):
            await service.get_valid_access_token(session.id)
        assert fake_provider.refreshed_tokens == ["rt1"]

    @pytest.mark.asyncio
    async def test_missing_access_token_in_refresh_revokes_session(
        self, service, fake_provider, make_session
    ):
        _, session = make_session()
        fake_provider.refresh_response = ProviderTokenResponse(access_token=None)

        with pytest.raises(TokenExchangeError):
            await service.refresh_access_token(session.id)
        assert SessionStore().find_by_id(session.id).status == SessionStatus.REVOKED

    @pytest.mark.asyncio
    async def test_expired_refresh_token_expires_session_without_network(
        self, service, fake_provider, make_session
    ):
        _, session = make_session(
            access_expires_in=timedelta(minutes=-10),
            refresh_expires_in=timedelta(seconds=-1),
        )

        with pytest.raises(RefreshTokenExpiredError):
            await service.refresh_access_token(session.id)

        stored = SessionStore().find_by_id(session.id)
        assert stored.status == SessionStatus.EXPIRED
        assert stored.revoked_at is None
        assert fake_provider.refreshed_tokens == []

        with pytest.raises(SessionNotActiveError):
            await service.get_valid_access_token(session.id)
        assert SessionStore().find_by_id(session.id).status == SessionStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_tampered_refresh_token_is_an_integrity_error(
        self, service, fake_provider, make_session, monkeypatch
    ):
        _, session = make_session()
        monkeypatch.setattr(config, "ENCRYPTION_KEY", "f" * 64)

        with pytest.raises(IntegrityError):
            await service.refresh_access_token(session.id)
        assert fake_provider.refreshed_tokens == []

    @pytest.mark.asyncio
    async def test_logout_during_refresh_is_not_undone(self, service, fake_provider, make_session):
        _, session = make_session()
        store = SessionStore()
        original = fake_provider.refresh_access_token

        async def refresh_then_logout(refresh_token):
            store.revoke(session.id)
            return await original(refresh_token)

        fake_provider.refresh_access_token = refresh_then_logout

        with pytest.raises(SessionNotActiveError):
            await service.refresh_access_token(session.id)
        assert store.find_by_id(session.id).status == SessionStatus.REVOKED

    @pytest.mark.asyncio
    async def test_revocation_survives_caller_transaction_rollback(
        self, service, fake_provider, make_session, rejected_refresh
    ):
        _, session = make_session()
        fake_provider.refresh_error = rejected_refresh

        with pytest.raises(TokenExchangeError):
            with db.session_scope() as tx:
                await service.refresh_access_token(session.id, tx=tx)

        stored = SessionStore().find_by_id(session.id)
        assert stored.status == SessionStatus.REVOKED
        assert stored.revoked_at is not None

    @pytest.mark.asyncio
    async def test_expiry_survives_caller_transaction_rollback(self, service, make_session):
        _, session = make_session(refresh_expires_in=timedelta(seconds=-1))

        with pytest.raises(RefreshTokenExpiredError):
            with db.session_scope() as tx:
                await service.refresh_access_token(session.id, tx=tx)

        assert SessionStore().find_by_id(session.id).status == SessionStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_refresh_joins_caller_transaction(self, service, make_session):
        _, session = make_session()

        with db.session_scope() as tx:
            result = await service.refresh_access_token(session.id, tx=tx)

        assert result.access_token == "at2"
        assert SessionStore().find_by_id(session.id).status == SessionStatus.ACTIVE
