"""Create users and verification_tokens.

Revision ID: 001_users_verification_tokens
Revises:
Create Date: 2026-10-18

- users: identity record with role, verification/active flags, soft delete,
  and a partial unique index on email among live rows.
- verification_tokens: hashed single-use codes per (user, method).
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_users_verification_tokens"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # gen_random_uuid() is built in from PostgreSQL 13; pgcrypto covers older
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # =========================================================================
    # users
    # =========================================================================
    op.create_table(
        "users",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column(
            "role", sa.String(20), server_default="CONSUMER", nullable=False
        ),
        sa.Column(
            "is_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column(
            "is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("picture", sa.Text(), nullable=True),
        sa.Column("provider_user_id", sa.String(255), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "role IN ('CONSUMER', 'DRIVER', 'MERCHANT', 'ADMIN')",
            name="ck_users_role",
        ),
    )
    op.create_index(
        "uq_users_email_live",
        "users",
        ["email"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # =========================================================================
    # verification_tokens
    # =========================================================================
    op.create_table(
        "verification_tokens",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "is_used", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "method IN ('EMAIL_VERIFICATION', 'PASSWORD_RESET')",
            name="ck_verification_tokens_method",
        ),
    )
    op.create_index(
        "idx_verification_tokens_lookup",
        "verification_tokens",
        ["user_id", "method", "token_hash"],
    )
    op.create_index(
        "idx_verification_tokens_issued",
        "verification_tokens",
        ["user_id", "method", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_verification_tokens_issued", table_name="verification_tokens")
    op.drop_index("idx_verification_tokens_lookup", table_name="verification_tokens")
    op.drop_table("verification_tokens")
    op.drop_index("uq_users_email_live", table_name="users")
    op.drop_table("users")
