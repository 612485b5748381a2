"""Create users and bookings tables.

Revision ID: 001_users_bookings
Revises:
Create Date: 2026-10-19

users: registered riders and admins (bcrypt password hash, role)
bookings: ride bookings with manage token, reschedule counter and
optional link to an account
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_users_bookings"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "role", sa.String(20), nullable=False, server_default=sa.text("'rider'")
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("role IN ('rider', 'admin')", name="ck_users_role"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "bookings",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("manage_token", sa.String(64), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("rider_name", sa.String(255), nullable=False),
        sa.Column("rider_email", sa.String(255), nullable=False),
        sa.Column("rider_phone", sa.String(32), nullable=True),
        sa.Column("pickup", sa.String(255), nullable=False),
        sa.Column("dropoff", sa.String(255), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "passengers", sa.SmallInteger(), nullable=False, server_default="1"
        ),
        sa.Column("luggages", sa.SmallInteger(), nullable=False, server_default="0"),
        sa.Column(
            "ride_type",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'per_ride'"),
        ),
        sa.Column(
            "user_id",
            sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("driver_id", sa.BigInteger(), nullable=True),
        sa.Column(
            "reschedule_count", sa.SmallInteger(), nullable=False, server_default="0"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'assigned', "
            "'on_trip', 'completed', 'canceled')",
            name="ck_bookings_status",
        ),
        sa.CheckConstraint(
            "ride_type IN ('per_ride', 'hourly')", name="ck_bookings_ride_type"
        ),
        sa.CheckConstraint("passengers BETWEEN 1 AND 8", name="ck_bookings_passengers"),
        sa.CheckConstraint("luggages BETWEEN 0 AND 10", name="ck_bookings_luggages"),
        sa.CheckConstraint(
            "reschedule_count >= 0",
            name="ck_bookings_reschedule_count",
        ),
    )
    op.create_index(
        "ix_bookings_manage_token", "bookings", ["manage_token"], unique=True
    )
    op.create_index(
        "ix_bookings_rider_email_lower", "bookings", [sa.text("lower(rider_email)")]
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_created_at", "bookings", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_bookings_created_at")
    op.drop_index("ix_bookings_user_id")
    op.drop_index("ix_bookings_rider_email_lower")
    op.drop_index("ix_bookings_manage_token")
    op.drop_table("bookings")
    op.drop_index("ix_users_email")
    op.drop_table("users")
