"""Persistence for login sessions and their encrypted provider tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db import optional_scope
from ..db_models import utc_now
from .crypto import EncryptedValue
from .models import AuthSession, SessionStatus

LOGGER = logging.getLogger(__name__)


@dataclass
class NewSession:
    """Everything needed to insert an ``active`` session row."""

    user_id: str
    provider: str
    provider_account_id: str
    access_token: EncryptedValue
    access_token_expires_at: datetime
    refresh_token: EncryptedValue
    refresh_token_expires_at: datetime
    scope: str
    expires_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


class SessionStore:
    """Reads and writes ``sessions`` rows.

    Status changes are conditional updates guarded by ``status = 'active'``,
    so a revoked or expired session can never be written back to active.
    """

    def create(self, payload: NewSession, *, tx: Optional[Session] = None) -> AuthSession:
        now = utc_now()
        with optional_scope(tx) as db:
            session = AuthSession(
                user_id=payload.user_id,
                status=SessionStatus.ACTIVE,
                provider=payload.provider,
                provider_access_token=payload.access_token.ciphertext,
                provider_access_token_iv=payload.access_token.iv,
                provider_access_token_tag=payload.access_token.tag,
                provider_access_token_expires_at=payload.access_token_expires_at,
                provider_refresh_token=payload.refresh_token.ciphertext,
                provider_refresh_token_iv=payload.refresh_token.iv,
                provider_refresh_token_tag=payload.refresh_token.tag,
                provider_refresh_token_expires_at=payload.refresh_token_expires_at,
                provider_scope=payload.scope,
                provider_account_id=payload.provider_account_id,
                last_accessed_at=now,
                expires_at=payload.expires_at,
                session_metadata=dict(payload.metadata),
            )
            db.add(session)
            db.flush()
            return session

    def find_by_id(self, session_id: str, *, tx: Optional[Session] = None) -> Optional[AuthSession]:
        with optional_scope(tx) as db:
            statement = (
                select(AuthSession)
                .where(AuthSession.id == session_id, AuthSession.deleted_at.is_(None))
                .execution_options(populate_existing=True)
            )
            return db.execute(statement).scalar_one_or_none()

    def _update_active(self, session_id: str, values: Dict[str, Any], tx: Optional[Session]) -> bool:
        with optional_scope(tx) as db:
            result = db.execute(
                update(AuthSession)
                .where(AuthSession.id == session_id, AuthSession.status == SessionStatus.ACTIVE)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def update_tokens(
        self,
        session_id: str,
        *,
        access_token: EncryptedValue,
        access_token_expires_at: datetime,
        refresh_token: Optional[EncryptedValue] = None,
        refresh_token_expires_at: Optional[datetime] = None,
        scope: Optional[str] = None,
        tx: Optional[Session] = None,
    ) -> Optional[AuthSession]:
        """Persist rotated provider tokens. Returns None when the session is no longer active."""
        now = utc_now()
        values: Dict[str, Any] = {
            "provider_access_token": access_token.ciphertext,
            "provider_access_token_iv": access_token.iv,
            "provider_access_token_tag": access_token.tag,
            "provider_access_token_expires_at": access_token_expires_at,
            "last_accessed_at": now,
            "updated_at": now,
        }
        if refresh_token is not None:
            values.update(
                provider_refresh_token=refresh_token.ciphertext,
                provider_refresh_token_iv=refresh_token.iv,
                provider_refresh_token_tag=refresh_token.tag,
            )
        if refresh_token_expires_at is not None:
            values["provider_refresh_token_expires_at"] = refresh_token_expires_at
            values["expires_at"] = refresh_token_expires_at
        if scope:
            values["provider_scope"] = scope

        with optional_scope(tx) as db:
            if not self._update_active(session_id, values, db):
                LOGGER.warning("Token update skipped for inactive session %s", session_id)
                return None
            return self.find_by_id(session_id, tx=db)

    def mark_expired(self, session_id: str, *, tx: Optional[Session] = None) -> bool:
        updated = self._update_active(
            session_id,
            {"status": SessionStatus.EXPIRED, "updated_at": utc_now()},
            tx,
        )
        if updated:
            LOGGER.info("Session %s expired", session_id)
        return updated

    def revoke(
        self,
        session_id: str,
        *,
        now: Optional[datetime] = None,
        tx: Optional[Session] = None,
    ) -> bool:
        """Transition an active session to ``revoked``. Returns False if it was already terminal."""
        moment = now or utc_now()
        updated = self._update_active(
            session_id,
            {"status": SessionStatus.REVOKED, "revoked_at": moment, "updated_at": moment},
            tx,
        )
        if updated:
            LOGGER.info("Session %s revoked", session_id)
        return updated

    def touch(self, session_id: str, *, tx: Optional[Session] = None) -> bool:
        return self._update_active(session_id, {"last_accessed_at": utc_now()}, tx)
