"""Tests for the user and session persistence stores."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError as DBIntegrityError

from crud_api import db
from crud_api.auth.crypto import encrypt
from crud_api.auth.errors import EmailInUseError, TransactionRequiredError
from crud_api.auth.models import AuthSession, AuthUser, SessionStatus, UserRole
from crud_api.auth.sessions import NewSession, SessionStore
from crud_api.auth.users import UserProfile, UserStore
from crud_api.db_models import utc_now


def _profile(**overrides) -> UserProfile:
    values = {"email": "a@x.com", "first_name": "A", "provider_account_id": "g-123"}
    values.update(overrides)
    return UserProfile(**values)


def _user_count() -> int:
    with db.session_scope() as tx:
        return tx.execute(select(func.count()).select_from(AuthUser)).scalar()


class TestUserStore:
    def test_create_and_find(self, database):
        store = UserStore()
        user = store.create(_profile(last_name="B", avatar="https://example.org/a.png"))

        assert user.role == UserRole.USER
        assert store.find_by_id(user.id).email == "a@x.com"
        assert store.find_by_email("a@x.com").id == user.id
        assert store.find_by_provider_account_id("g-123").id == user.id
        assert store.find_by_email("A@X.COM") is None

    def test_soft_deleted_users_are_hidden(self, database):
        store = UserStore()
        user = store.create(_profile())
        with db.session_scope() as tx:
            tx.execute(update(AuthUser).where(AuthUser.id == user.id).values(deleted_at=utc_now()))

        assert store.find_by_id(user.id) is None
        assert store.find_by_email("a@x.com") is None
        assert store.find_by_id(user.id, include_deleted=True).is_deleted

    def test_email_can_be_reused_after_soft_delete(self, database):
        store = UserStore()
        first = store.create(_profile())
        with db.session_scope() as tx:
            tx.execute(update(AuthUser).where(AuthUser.id == first.id).values(deleted_at=utc_now()))

        second = store.create(_profile())

        assert second.id != first.id

    def test_duplicate_active_identity_is_rejected(self, database):
        store = UserStore()
        store.create(_profile())

        with pytest.raises(DBIntegrityError):
            store.create(_profile(email="other@x.com"))

    def test_upsert_requires_a_transaction(self, database):
        with pytest.raises(TransactionRequiredError):
            UserStore().upsert_by_provider_account_id(_profile(), tx=None)

    def test_upsert_matches_provider_account_id_first(self, database):
        store = UserStore()
        original = store.create(_profile())

        with db.session_scope() as tx:
            updated = store.upsert_by_provider_account_id(
                _profile(email="new@x.com", first_name="Ada"), tx=tx
            )

        assert updated.id == original.id
        assert store.find_by_id(original.id).email == "new@x.com"
        assert store.find_by_id(original.id).first_name == "Ada"

    def test_upsert_falls_back_to_email_and_relinks(self, database):
        store = UserStore()
        original = store.create(_profile(provider_account_id="old-subject"))

        with db.session_scope() as tx:
            relinked = store.upsert_by_provider_account_id(_profile(provider_account_id="g-123"), tx=tx)

        assert relinked.id == original.id
        assert store.find_by_provider_account_id("g-123").id == original.id
        assert store.find_by_provider_account_id("old-subject") is None
        assert _user_count() == 1

    def test_upsert_creates_when_nothing_matches(self, database):
        store = UserStore()
        store.create(_profile(email="someone@x.com", provider_account_id="g-1"))

        with db.session_scope() as tx:
            created = store.upsert_by_provider_account_id(_profile(), tx=tx)

        assert created.provider_account_id == "g-123"
        assert _user_count() == 2

    def test_upsert_refuses_email_held_by_another_user(self, database):
        store = UserStore()
        owner = store.create(_profile())
        store.create(_profile(email="b@x.com", provider_account_id="g-999"))

        with pytest.raises(EmailInUseError):
            with db.session_scope() as tx:
                store.upsert_by_provider_account_id(_profile(email="b@x.com"), tx=tx)

        assert store.find_by_id(owner.id).email == "a@x.com"

    def test_upsert_may_take_email_of_soft_deleted_user(self, database):
        store = UserStore()
        owner = store.create(_profile())
        gone = store.create(_profile(email="b@x.com", provider_account_id="g-999"))
        with db.session_scope() as tx:
            tx.execute(update(AuthUser).where(AuthUser.id == gone.id).values(deleted_at=utc_now()))

        with db.session_scope() as tx:
            store.upsert_by_provider_account_id(_profile(email="b@x.com"), tx=tx)

        assert store.find_by_id(owner.id).email == "b@x.com"

    def test_update_by_id_rejects_unknown_fields(self, database):
        store = UserStore()
        user = store.create(_profile())

        assert store.update_by_id(user.id, {"role": UserRole.ADMIN}).role == UserRole.ADMIN
        assert store.update_by_id("missing", {"first_name": "x"}) is None
        with pytest.raises(ValueError):
            store.update_by_id(user.id, {"password": "nope"})

    def test_list_users_paginates(self, database):
        store = UserStore()
        for index in range(5):
            store.create(_profile(email=f"u{index}@x.com", provider_account_id=f"g-{index}"))

        first_page, total = store.list_users(page=1, limit=2)
        last_page, _ = store.list_users(page=3, limit=2)

        assert total == 5
        assert len(first_page) == 2
        assert len(last_page) == 1


class TestSessionStore:
    def _payload(self, user_id: str, *, refresh_plaintext: str = "rt1") -> NewSession:
        now = utc_now()
        return NewSession(
            user_id=user_id,
            provider="google",
            provider_account_id="g-123",
            access_token=encrypt("at1", "0123456789abcdef" * 4),
            access_token_expires_at=now + timedelta(hours=1),
            refresh_token=encrypt(refresh_plaintext, "0123456789abcdef" * 4),
            refresh_token_expires_at=now + timedelta(days=90),
            scope="openid email profile",
            expires_at=now + timedelta(days=90),
            metadata={"ipAddress": "127.0.0.1", "userAgent": "pytest"},
        )

    def test_create_stores_each_secret_as_three_columns(self, database):
        user = UserStore().create(_profile())
        session = SessionStore().create(self._payload(user.id))
        stored = SessionStore().find_by_id(session.id)

        assert stored.status == SessionStatus.ACTIVE
        assert stored.revoked_at is None
        assert stored.provider_access_token_iv != stored.provider_refresh_token_iv
        assert stored.provider_access_token_tag != stored.provider_refresh_token_tag
        assert stored.session_metadata == {"ipAddress": "127.0.0.1", "userAgent": "pytest"}

    def test_revoke_is_one_way(self, database):
        user = UserStore().create(_profile())
        store = SessionStore()
        session = store.create(self._payload(user.id))

        assert store.revoke(session.id) is True
        assert store.revoke(session.id) is False
        assert store.mark_expired(session.id) is False

        stored = store.find_by_id(session.id)
        assert stored.status == SessionStatus.REVOKED
        assert stored.revoked_at is not None

    def test_expired_sessions_cannot_be_revoked_or_updated(self, database):
        user = UserStore().create(_profile())
        store = SessionStore()
        session = store.create(self._payload(user.id))

        assert store.mark_expired(session.id) is True
        assert store.revoke(session.id) is False
        assert store.update_tokens(
            session.id,
            access_token=encrypt("at2", "0123456789abcdef" * 4),
            access_token_expires_at=utc_now() + timedelta(hours=1),
        ) is None

        stored = store.find_by_id(session.id)
        assert stored.status == SessionStatus.EXPIRED
        assert stored.revoked_at is None

    def test_update_tokens_keeps_refresh_token_unless_given(self, database):
        user = UserStore().create(_profile())
        store = SessionStore()
        session = store.create(self._payload(user.id))

        updated = store.update_tokens(
            session.id,
            access_token=encrypt("at2", "0123456789abcdef" * 4),
            access_token_expires_at=utc_now() + timedelta(hours=2),
        )

        assert updated.provider_access_token != session.provider_access_token
        assert updated.provider_refresh_token == session.provider_refresh_token

    def test_refresh_token_ciphertext_is_unique(self, database):
        user = UserStore().create(_profile())
        store = SessionStore()
        payload = self._payload(user.id)
        store.create(payload)

        with pytest.raises(DBIntegrityError):
            store.create(payload)

    def test_revoked_at_must_match_status(self, database):
        user = UserStore().create(_profile())
        session = SessionStore().create(self._payload(user.id))

        with pytest.raises(DBIntegrityError):
            with db.session_scope() as tx:
                tx.execute(
                    update(AuthSession)
                    .where(AuthSession.id == session.id)
                    .values(status=SessionStatus.REVOKED)
                )
