"""Persistence for user identity records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db import optional_scope
from .errors import EmailInUseError, TransactionRequiredError
from .models import AuthUser

LOGGER = logging.getLogger(__name__)

_MUTABLE_FIELDS = ("email", "first_name", "last_name", "avatar", "provider_account_id", "role")


@dataclass
class UserProfile:
    """Identity fields synchronised from the provider on each login."""

    email: str
    first_name: str
    provider_account_id: str
    last_name: Optional[str] = None
    avatar: Optional[str] = None

    def as_changes(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "avatar": self.avatar,
            "provider_account_id": self.provider_account_id,
        }


class UserStore:
    """Reads and writes ``users`` rows. Soft-deleted rows are hidden by default."""

    @staticmethod
    def _active(statement, include_deleted: bool):
        if include_deleted:
            return statement
        return statement.where(AuthUser.deleted_at.is_(None))

    def find_by_id(
        self,
        user_id: str,
        *,
        include_deleted: bool = False,
        tx: Optional[Session] = None,
    ) -> Optional[AuthUser]:
        with optional_scope(tx) as db:
            statement = self._active(select(AuthUser).where(AuthUser.id == user_id), include_deleted)
            return db.execute(statement).scalar_one_or_none()

    def find_by_email(
        self,
        email: str,
        *,
        include_deleted: bool = False,
        tx: Optional[Session] = None,
    ) -> Optional[AuthUser]:
        # Emails are compared exactly as stored.
        with optional_scope(tx) as db:
            statement = self._active(select(AuthUser).where(AuthUser.email == email), include_deleted)
            return db.execute(statement).scalars().first()

    def find_by_provider_account_id(
        self,
        provider_account_id: str,
        *,
        include_deleted: bool = False,
        tx: Optional[Session] = None,
    ) -> Optional[AuthUser]:
        with optional_scope(tx) as db:
            statement = self._active(
                select(AuthUser).where(AuthUser.provider_account_id == provider_account_id),
                include_deleted,
            )
            return db.execute(statement).scalars().first()

    def create(self, profile: UserProfile, *, tx: Optional[Session] = None) -> AuthUser:
        with optional_scope(tx) as db:
            user = AuthUser(**profile.as_changes())
            db.add(user)
            db.flush()
            return user

    def update_by_id(
        self,
        user_id: str,
        changes: Dict[str, Any],
        *,
        tx: Optional[Session] = None,
    ) -> Optional[AuthUser]:
        unknown = set(changes) - set(_MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported user fields: {', '.join(sorted(unknown))}")
        with optional_scope(tx) as db:
            user = self.find_by_id(user_id, tx=db)
            if user is None:
                return None
            for field, value in changes.items():
                setattr(user, field, value)
            db.flush()
            return user

    def upsert_by_provider_account_id(self, profile: UserProfile, *, tx: Optional[Session]) -> AuthUser:
        """Create or update the user identified by ``profile``.

        Lookup order: provider account id, then email (the account was
        re-linked at the provider), then insert. Must run inside the caller's
        transaction so it commits or rolls back with the session insert.

        Raises:
            TransactionRequiredError: ``tx`` is None.
            EmailInUseError: The profile's new email belongs to another active user.
            sqlalchemy.exc.IntegrityError: A concurrent insert won the race.
        """
        if tx is None:
            raise TransactionRequiredError("User upsert must run inside a transaction")

        existing = self.find_by_provider_account_id(profile.provider_account_id, tx=tx)
        if existing is None:
            existing = self.find_by_email(profile.email, tx=tx)
            if existing is not None:
                LOGGER.info("Re-linking user %s to a new provider account id", existing.id)
        if existing is None:
            user = self.create(profile, tx=tx)
            LOGGER.info("Created user %s", user.id)
            return user

        if profile.email != existing.email:
            holder = self.find_by_email(profile.email, tx=tx)
            if holder is not None and holder.id != existing.id:
                LOGGER.warning(
                    "User %s reported an email already held by user %s", existing.id, holder.id
                )
                raise EmailInUseError()

        for field, value in profile.as_changes().items():
            setattr(existing, field, value)
        tx.flush()
        return existing

    def list_users(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        tx: Optional[Session] = None,
    ) -> Tuple[List[AuthUser], int]:
        """Return one page of non-deleted users, newest first, and the total count."""
        page = max(page, 1)
        limit = max(limit, 1)
        with optional_scope(tx) as db:
            total = db.execute(
                select(func.count()).select_from(AuthUser).where(AuthUser.deleted_at.is_(None))
            ).scalar() or 0
            rows = db.execute(
                select(AuthUser)
                .where(AuthUser.deleted_at.is_(None))
                .order_by(AuthUser.created_at.desc(), AuthUser.id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()
        return list(rows), int(total)
