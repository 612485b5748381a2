"""Repository for booking idempotency reservations.

A key moves through two states inside the creating transaction:
reserved (booking_id NULL) and recorded (booking_id set). Because the
reservation is an INSERT ... ON CONFLICT on the primary key, a concurrent
request with the same key blocks on the uncommitted row until the first
transaction commits or rolls back, then sees the recorded booking.
"""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.booking_idempotency import BookingIdempotency


class IdempotencyRepository:
    """Stateless repository for booking_idempotency operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def reserve(
        db: AsyncSession,
        *,
        key_hash: str,
        request_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Claim a key for the current transaction.

        Inserts a reservation, or takes over a row whose previous
        reservation has expired.

        Args:
            db: Async database session.
            key_hash: SHA-256 hex digest of the idempotency key.
            request_hash: Fingerprint of the payload creating the booking.
            expires_at: When the new reservation lapses.
            now: Current time, used to detect expired rows.

        Returns:
            True if this transaction now owns the key, False if a live
            record already exists.
        """
        stmt = pg_insert(BookingIdempotency).values(
            key_hash=key_hash,
            request_hash=request_hash,
            booking_id=None,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[BookingIdempotency.key_hash],
            set_={
                "request_hash": stmt.excluded.request_hash,
                "booking_id": None,
                "expires_at": stmt.excluded.expires_at,
            },
            where=BookingIdempotency.expires_at < now,
        ).returning(BookingIdempotency.key_hash)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_record(
        db: AsyncSession, *, key_hash: str
    ) -> tuple[int | None, str] | None:
        """Read the booking id and request fingerprint stored for a key.

        Returns:
            (booking_id, request_hash), or None if the key is unknown.
        """
        stmt = select(
            BookingIdempotency.booking_id, BookingIdempotency.request_hash
        ).where(BookingIdempotency.key_hash == key_hash)
        result = await db.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return row.booking_id, row.request_hash

    @staticmethod
    async def record(db: AsyncSession, *, key_hash: str, booking_id: int) -> None:
        """Attach the created booking to a reserved key."""
        stmt = (
            update(BookingIdempotency)
            .where(BookingIdempotency.key_hash == key_hash)
            .values(booking_id=booking_id)
        )
        await db.execute(stmt)

    @staticmethod
    async def delete_expired(db: AsyncSession, *, now: datetime) -> int:
        """Delete records past expires_at.

        Args:
            db: Async database session.
            now: Cutoff timestamp.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(BookingIdempotency).where(BookingIdempotency.expires_at < now)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
