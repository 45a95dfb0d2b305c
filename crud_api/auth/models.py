"""SQLAlchemy models for the authentication subsystem."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship

from ..db import Base
from ..db_models import SoftDeleteMixin, TimestampMixin, utc_now


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class SessionStatus(str, Enum):
    """Lifecycle of a login session. ``revoked`` and ``expired`` are terminal."""

    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


def _enum_column(enum_cls, **kwargs) -> Column:
    return Column(
        SAEnum(
            enum_cls,
            native_enum=False,
            length=16,
            values_callable=lambda members: [member.value for member in members],
        ),
        **kwargs,
    )


def _new_id() -> str:
    return str(uuid4())


class AuthUser(TimestampMixin, SoftDeleteMixin, Base):
    """Identity record synchronised from the OAuth provider on every login."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(320), nullable=False)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=True)
    avatar = Column(Text, nullable=True)
    provider_account_id = Column(String(255), nullable=False)
    role = _enum_column(UserRole, nullable=False, default=UserRole.USER)

    sessions = relationship("AuthSession", back_populates="user")

    __table_args__ = (
        # Uniqueness only applies to rows that are not soft-deleted.
        Index(
            "uq_users_email_active",
            "email",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index(
            "uq_users_provider_account_id_active",
            "provider_account_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )


class AuthSession(TimestampMixin, SoftDeleteMixin, Base):
    """One authenticated login holding the encrypted provider tokens.

    Each secret is stored as three base64 columns (ciphertext, iv, tag).
    """

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = _enum_column(SessionStatus, nullable=False, default=SessionStatus.ACTIVE, index=True)
    provider = Column(String(32), nullable=False, index=True)

    provider_access_token = Column(Text, nullable=False)
    provider_access_token_iv = Column(String(32), nullable=False)
    provider_access_token_tag = Column(String(32), nullable=False)
    provider_access_token_expires_at = Column(DateTime(timezone=True), nullable=False)

    provider_refresh_token = Column(Text, nullable=False, unique=True)
    provider_refresh_token_iv = Column(String(32), nullable=False)
    provider_refresh_token_tag = Column(String(32), nullable=False)
    provider_refresh_token_expires_at = Column(DateTime(timezone=True), nullable=False)

    provider_scope = Column(Text, nullable=False)
    provider_account_id = Column(String(255), nullable=False, index=True)

    last_accessed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    # "metadata" is reserved on declarative classes.
    session_metadata = Column("metadata", JSON, nullable=False, default=dict)

    user = relationship("AuthUser", back_populates="sessions")

    __table_args__ = (
        CheckConstraint(
            "(status = 'revoked' AND revoked_at IS NOT NULL) "
            "OR (status <> 'revoked' AND revoked_at IS NULL)",
            name="ck_sessions_revoked_at_matches_status",
        ),
    )
