"""create users and sessions

Revision ID: 20240801_users_sessions
Revises: 
Create Date: 2024-08-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20240801_users_sessions"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_ROWS = sa.text("deleted_at IS NULL")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("avatar", sa.Text(), nullable=True),
        sa.Column("provider_account_id", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), server_default="user", nullable=False),
    )
    op.create_index(
        "uq_users_email_active",
        "users",
        ["email"],
        unique=True,
        sqlite_where=_ACTIVE_ROWS,
        postgresql_where=_ACTIVE_ROWS,
    )
    op.create_index(
        "uq_users_provider_account_id_active",
        "users",
        ["provider_account_id"],
        unique=True,
        sqlite_where=_ACTIVE_ROWS,
        postgresql_where=_ACTIVE_ROWS,
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="active", nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("provider_access_token", sa.Text(), nullable=False),
        sa.Column("provider_access_token_iv", sa.String(length=32), nullable=False),
        sa.Column("provider_access_token_tag", sa.String(length=32), nullable=False),
        sa.Column("provider_access_token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provider_refresh_token", sa.Text(), nullable=False, unique=True),
        sa.Column("provider_refresh_token_iv", sa.String(length=32), nullable=False),
        sa.Column("provider_refresh_token_tag", sa.String(length=32), nullable=False),
        sa.Column("provider_refresh_token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provider_scope", sa.Text(), nullable=False),
        sa.Column("provider_account_id", sa.String(length=255), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.CheckConstraint(
            "(status = 'revoked' AND revoked_at IS NOT NULL) "
            "OR (status <> 'revoked' AND revoked_at IS NULL)",
            name="ck_sessions_revoked_at_matches_status",
        ),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
    op.create_index("ix_sessions_status", "sessions", ["status"])
    op.create_index("ix_sessions_provider", "sessions", ["provider"])
    op.create_index("ix_sessions_provider_account_id", "sessions", ["provider_account_id"])
    op.create_index("ix_sessions_last_accessed_at", "sessions", ["last_accessed_at"])
    op.create_index("ix_sessions_revoked_at", "sessions", ["revoked_at"])
    op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"])


def downgrade() -> None:
    for index_name in (
        "ix_sessions_expires_at",
        "ix_sessions_revoked_at",
        "ix_sessions_last_accessed_at",
        "ix_sessions_provider_account_id",
        "ix_sessions_provider",
        "ix_sessions_status",
        "ix_sessions_user_id",
    ):
        op.drop_index(index_name, table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("uq_users_provider_account_id_active", table_name="users")
    op.drop_index("uq_users_email_active", table_name="users")
    op.drop_table("users")
