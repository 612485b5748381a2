"""Repository for Booking operations.

Reads that precede a mutation lock the row (SELECT ... FOR UPDATE) so
policy checks and the write they guard see the same state.
"""

from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.booking import Booking

# Fields that may be changed through a patch.
# Security: Never add manage_token, user_id, rider_email, status or
# reschedule_count here. Those move only through dedicated transitions.
_PATCHABLE_FIELDS: frozenset[str] = frozenset(
    {
        "rider_name",
        "rider_phone",
        "pickup",
        "dropoff",
        "scheduled_at",
        "notes",
        "passengers",
        "luggages",
        "ride_type",
    }
)


class BookingRepository:
    """Stateless repository for Booking table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(db: AsyncSession, **fields: Any) -> Booking:
        """Insert a booking.

        Args:
            db: Async database session.
            **fields: Column values (manage_token, rider_*, trip fields, user_id).

        Returns:
            Created Booking with database-generated fields populated.
        """
        booking = Booking(**fields)
        db.add(booking)
        await db.flush()
        await db.refresh(booking)
        return booking

    @staticmethod
    async def get_by_id(
        db: AsyncSession, booking_id: int, *, for_update: bool = False
    ) -> Booking | None:
        """Fetch a booking by primary key.

        Args:
            db: Async database session.
            booking_id: Bigint primary key.
            for_update: Lock the row until the transaction ends.

        Returns:
            Booking if found, None otherwise.
        """
        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def apply_patch(
        db: AsyncSession,
        booking: Booking,
        changes: dict[str, Any],
        *,
        reschedule: bool = False,
    ) -> Booking:
        """Write patched fields onto a (locked) booking.

        Args:
            db: Async database session.
            booking: Booking loaded with for_update=True.
            changes: Field names and new values. Absent fields keep their value.
            reschedule: Increment reschedule_count in the same write.

        Returns:
            Refreshed Booking.

        Raises:
            ValueError: If a non-patchable field name is passed.
        """
        unknown = set(changes) - _PATCHABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        for field, value in changes.items():
            setattr(booking, field, value)
        if reschedule:
            booking.reschedule_count = Booking.reschedule_count + 1

        await db.flush()
        await db.refresh(booking)
        return booking

    @staticmethod
    async def mark_canceled(db: AsyncSession, booking: Booking) -> Booking:
        """Transition a (locked) booking to canceled."""
        booking.status = "canceled"
        await db.flush()
        await db.refresh(booking)
        return booking

    @staticmethod
    async def list_for_owner(
        db: AsyncSession,
        *,
        email: str,
        user_id: int | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Booking]:
        """List bookings owned by an email or account, newest first.

        Args:
            db: Async database session.
            email: Rider email, matched case-insensitively.
            user_id: Linked account id, if any.
            status: Optional status filter.
            limit: Maximum rows to return.
            offset: Rows to skip.

        Returns:
            Bookings ordered by created_at descending.
        """
        owner = func.lower(Booking.rider_email) == email.strip().lower()
        if user_id is not None:
            owner = or_(owner, Booking.user_id == user_id)
        conditions = [owner]
        if status is not None:
            conditions.append(Booking.status == status)

        stmt = (
            select(Booking)
            .where(*conditions)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_all(
        db: AsyncSession,
        *,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Booking]:
        """List every booking, newest first (admin view)."""
        stmt = select(Booking)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        stmt = (
            stmt.order_by(Booking.created_at.desc(), Booking.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def link_to_user(db: AsyncSession, *, email: str, user_id: int) -> int:
        """Attach unlinked guest bookings for an email to an account.

        Args:
            db: Async database session.
            email: Rider email, matched case-insensitively.
            user_id: Account to link to.

        Returns:
            Number of bookings linked.
        """
        stmt = (
            update(Booking)
            .where(
                func.lower(Booking.rider_email) == email.strip().lower(),
                Booking.user_id.is_(None),
            )
            .values(user_id=user_id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
