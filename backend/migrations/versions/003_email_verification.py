"""Add users.email_verified and email_verification_tokens.

Revision ID: 003_email_verification
Revises: 002_guard_state
Create Date: 2026-10-19

users.email_verified: NULL until the emailed link is opened; login is
refused while NULL. Accounts that existed before this revision are
marked verified so they keep signing in.
email_verification_tokens: SHA-256 token hash, expiry and used_at
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "003_email_verification"
down_revision: str | None = "002_guard_state"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "users",
        sa.Column("email_verified", sa.DateTime(timezone=True), nullable=True),
    )
    op.execute("UPDATE users SET email_verified = created_at")

    op.create_table(
        "email_verification_tokens",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column(
            "user_id",
            sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "token_hash", name="uq_email_verification_tokens_token_hash"
        ),
    )
    op.create_index(
        "ix_email_verification_tokens_user_id",
        "email_verification_tokens",
        ["user_id"],
    )
    op.create_index(
        "ix_email_verification_tokens_expires_at",
        "email_verification_tokens",
        ["expires_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_email_verification_tokens_expires_at")
    op.drop_index("ix_email_verification_tokens_user_id")
    op.drop_table("email_verification_tokens")
    op.drop_column("users", "email_verified")
