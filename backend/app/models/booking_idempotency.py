"""Idempotency record model - hashed Idempotency-Key to created booking.

booking_id is NULL only while the creating transaction holds the
reservation; it is filled in before that transaction commits.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class BookingIdempotency(Base):
    """Idempotency key reservation.

    Attributes:
        key_hash: SHA-256 hex digest of the Idempotency-Key header.
        request_hash: SHA-256 fingerprint of the normalized create payload.
        booking_id: Booking created for this key.
        expires_at: After this the key may be reused.
    """

    __tablename__ = "booking_idempotency"
    __table_args__ = (Index("ix_booking_idempotency_expires_at", "expires_at"),)

    key_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    booking_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
