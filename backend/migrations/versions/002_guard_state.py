"""Create guard state tables: rate_limits, booking_idempotency, guest_access_codes.

Revision ID: 002_guard_state
Revises: 001_users_bookings
Create Date: 2026-10-19

rate_limits: fixed-window counters keyed by SHA-256 of the limit key
booking_idempotency: hashed Idempotency-Key + payload fingerprint to booking id
guest_access_codes: bcrypt code hash + magic token sharing one used_at
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "002_guard_state"
down_revision: str | None = "001_users_bookings"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "rate_limits",
        sa.Column("key_hash", sa.String(64), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_rate_limits_expires_at", "rate_limits", ["expires_at"])

    # booking_id stays NULL only inside the transaction that reserved the key
    op.create_table(
        "booking_idempotency",
        sa.Column("key_hash", sa.String(64), primary_key=True),
        sa.Column("request_hash", sa.String(64), nullable=False),
        sa.Column(
            "booking_id",
            sa.BigInteger(),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_booking_idempotency_expires_at", "booking_idempotency", ["expires_at"]
    )

    op.create_table(
        "guest_access_codes",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("code_hash", sa.String(255), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("ip_created", sa.String(64), nullable=True),
    )
    op.create_index(
        "ix_guest_access_codes_token", "guest_access_codes", ["token"], unique=True
    )
    op.create_index(
        "ix_guest_access_codes_email_created",
        "guest_access_codes",
        [sa.text("lower(email)"), sa.text("created_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("ix_guest_access_codes_email_created")
    op.drop_index("ix_guest_access_codes_token")
    op.drop_table("guest_access_codes")
    op.drop_index("ix_booking_idempotency_expires_at")
    op.drop_table("booking_idempotency")
    op.drop_index("ix_rate_limits_expires_at")
    op.drop_table("rate_limits")
