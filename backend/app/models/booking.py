"""Booking model - the ride reservation guarded by manage tokens and sessions.

status moves pending -> confirmed -> assigned -> on_trip -> completed, or
to canceled from any open state. Only the reschedule counter and the
cancel transition are driven from this service.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    SmallInteger,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.user import User

BOOKING_STATUSES = (
    "pending",
    "confirmed",
    "assigned",
    "on_trip",
    "completed",
    "canceled",
)
CLOSED_STATUSES = frozenset({"canceled", "completed"})
RIDE_TYPES = ("per_ride", "hourly")


class Booking(Base, TimestampMixin):
    """Ride booking.

    Attributes:
        id: Bigint identity primary key.
        manage_token: Unique capability secret granting access to this booking.
        status: Lifecycle status (see BOOKING_STATUSES).
        rider_name: Rider display name.
        rider_email: Rider email, matched case-insensitively for ownership.
        rider_phone: Optional rider phone.
        pickup: Pickup address.
        dropoff: Dropoff address.
        scheduled_at: Pickup time (timezone-aware).
        notes: Free-form rider notes.
        passengers: 1-8.
        luggages: 0-10.
        ride_type: "per_ride" or "hourly".
        user_id: Owning account, once linked. NULL for guest bookings.
        driver_id: Assigned driver (set by dispatch, not modeled here).
        reschedule_count: Number of scheduled_at changes, capped by max_reschedules.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'assigned', "
            "'on_trip', 'completed', 'canceled')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "ride_type IN ('per_ride', 'hourly')", name="ck_bookings_ride_type"
        ),
        CheckConstraint(
            "passengers BETWEEN 1 AND 8", name="ck_bookings_passengers"
        ),
        CheckConstraint("luggages BETWEEN 0 AND 10", name="ck_bookings_luggages"),
        CheckConstraint(
            "reschedule_count >= 0", name="ck_bookings_reschedule_count"
        ),
        Index("ix_bookings_rider_email_lower", text("lower(rider_email)")),
        Index("ix_bookings_user_id", "user_id"),
        Index("ix_bookings_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    manage_token: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'pending'"),
        default="pending",
    )
    rider_name: Mapped[str] = mapped_column(String(255), nullable=False)
    rider_email: Mapped[str] = mapped_column(String(255), nullable=False)
    rider_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pickup: Mapped[str] = mapped_column(String(255), nullable=False)
    dropoff: Mapped[str] = mapped_column(String(255), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text(), nullable=True)
    passengers: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        server_default=text("1"),
        default=1,
    )
    luggages: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    ride_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'per_ride'"),
        default="per_ride",
    )
    user_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    driver_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    reschedule_count: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        server_default=text("0"),
        default=0,
    )

    # Relationships
    user: Mapped["User | None"] = relationship(
        "User",
        back_populates="bookings",
    )

    @property
    def is_closed(self) -> bool:
        """True once the booking is canceled or completed."""
        return self.status in CLOSED_STATUSES
