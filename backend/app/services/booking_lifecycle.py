"""Booking lifecycle: create, read, patch, cancel and list under policy.

Every mutation loads the booking with SELECT ... FOR UPDATE through
AuthorizationResolver, checks booking_policy rules against that locked
row and only then writes. A rejected patch leaves the row untouched.

Creation optionally goes through IdempotencyStore. The key is reserved,
the booking inserted and the key recorded in one transaction.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import SessionIdentity
from app.core.config import settings
from app.core.errors import NotFoundError, UnauthorizedError
from app.core.pagination import PaginationParams
from app.models.booking import Booking
from app.models.user import User
from app.repositories.booking_repository import BookingRepository
from app.schemas.booking import BookingCreate, BookingCreateForUser
from app.services.authorization import AuthorizationResolver, ResolvedAccess
from app.services.booking_policy import (
    check_cancel_allowed,
    check_reschedule_allowed,
    is_reschedule,
    validate_booking_fields,
    validate_status_filter,
)
from app.services.idempotency_store import IdempotencyStore, fingerprint_request

logger = logging.getLogger(__name__)

_MANAGE_TOKEN_BYTES = 32

_TRIP_FIELDS = (
    "pickup",
    "dropoff",
    "scheduled_at",
    "notes",
    "passengers",
    "luggages",
    "ride_type",
)


@dataclass(frozen=True)
class CreatedBooking:
    """Result of a create call.

    Attributes:
        booking: The new booking, or the one created earlier for the same
            idempotency key.
        replayed: True when the booking came from an earlier request.
    """

    booking: Booking
    replayed: bool = False


def generate_manage_token() -> str:
    """Fresh random capability secret for a booking."""
    return secrets.token_urlsafe(_MANAGE_TOKEN_BYTES)


class BookingLifecycle:
    """Validates and mutates bookings under policy.

    Args:
        db: Async database session. The caller commits.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._resolver = AuthorizationResolver(db)
        self._idempotency = IdempotencyStore(db)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def _create(
        self,
        fields: dict[str, Any],
        *,
        idempotency_key: str | None,
        now: datetime,
    ) -> CreatedBooking:
        validate_booking_fields(fields, now=now)

        if idempotency_key is not None:
            existing_id = await self._idempotency.check_or_reserve(
                idempotency_key, request_hash=fingerprint_request(fields), now=now
            )
            if existing_id is not None:
                existing = await BookingRepository.get_by_id(self._db, existing_id)
                if existing is not None:
                    return CreatedBooking(booking=existing, replayed=True)

        booking = await BookingRepository.create(
            self._db,
            manage_token=generate_manage_token(),
            status="pending",
            reschedule_count=0,
            **fields,
        )
        if idempotency_key is not None:
            await self._idempotency.record(idempotency_key, booking.id)

        logger.info("Booking %d created", booking.id)
        return CreatedBooking(booking=booking)

    async def create_guest(
        self,
        payload: BookingCreate,
        *,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> CreatedBooking:
        """Create an anonymous booking.

        Args:
            payload: Validated request body.
            idempotency_key: Raw Idempotency-Key header, if sent.
            now: Override for the current time.

        Returns:
            CreatedBooking (pending, fresh manage token).

        Raises:
            ValidationError: Field out of range or scheduled_at not in the future.
            PolicyViolationError: IDEMPOTENCY_KEY_REUSED for a key sent earlier
                with a different payload.
        """
        fields = payload.model_dump()
        fields["rider_email"] = fields["rider_email"].strip().lower()
        key = None
        if idempotency_key is not None:
            key = (
                f"guest:{fields['rider_email']}:"
                f"{IdempotencyStore.validate_key(idempotency_key)}"
            )
        return await self._create(
            fields, idempotency_key=key, now=now or datetime.now(UTC)
        )

    async def create_for_user(
        self,
        user: User,
        payload: BookingCreateForUser,
        *,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> CreatedBooking:
        """Create a booking linked to a registered account.

        Rider name, email and phone come from the account; the request only
        fills values the account lacks.

        Raises:
            ValidationError: Field out of range or scheduled_at not in the future.
            PolicyViolationError: IDEMPOTENCY_KEY_REUSED for a key sent earlier
                with a different payload.
        """
        fields: dict[str, Any] = {name: getattr(payload, name) for name in _TRIP_FIELDS}
        fields.update(
            user_id=user.id,
            rider_email=user.email,
            rider_name=user.name or payload.rider_name or user.email,
            rider_phone=user.phone or payload.rider_phone,
        )
        key = None
        if idempotency_key is not None:
            key = f"user:{user.id}:{IdempotencyStore.validate_key(idempotency_key)}"
        return await self._create(
            fields, idempotency_key=key, now=now or datetime.now(UTC)
        )

    # -------------------------------------------------------------------------
    # Read / mutate
    # -------------------------------------------------------------------------

    async def get(
        self,
        booking_id: int,
        *,
        manage_token: str | None = None,
        identity: SessionIdentity | None = None,
    ) -> ResolvedAccess:
        """Load a booking the caller may see.

        Raises:
            UnauthorizedError: No manage token and no session.
            NotFoundError: Missing, or not accessible to the caller.
        """
        return await self._resolver.resolve(
            booking_id, manage_token=manage_token, identity=identity
        )

    async def patch(
        self,
        booking_id: int,
        changes: dict[str, Any],
        *,
        manage_token: str | None = None,
        identity: SessionIdentity | None = None,
        now: datetime | None = None,
    ) -> ResolvedAccess:
        """Apply the supplied fields to a booking.

        A scheduled_at equal to the stored value is not a reschedule and
        does not count against the cap.

        Args:
            booking_id: Booking primary key.
            changes: Present fields only (absent fields keep their value).
            manage_token: Capability secret, if any.
            identity: Session identity, if any.
            now: Override for the current time.

        Returns:
            ResolvedAccess holding the updated booking.

        Raises:
            UnauthorizedError: No manage token and no session.
            NotFoundError: Missing, or not accessible to the caller.
            ValidationError: A present field is out of range.
            PolicyViolationError: RESCHEDULE_LIMIT_REACHED or BOOKING_CLOSED.
        """
        now = now or datetime.now(UTC)
        access = await self._resolver.resolve(
            booking_id,
            manage_token=manage_token,
            identity=identity,
            for_update=True,
        )
        booking = access.booking
        changes = dict(changes)

        reschedule = is_reschedule(booking, changes.get("scheduled_at"))
        if not reschedule:
            changes.pop("scheduled_at", None)

        validate_booking_fields(changes, now=now)
        if reschedule:
            check_reschedule_allowed(booking, max_reschedules=settings.max_reschedules)

        if not changes:
            return access

        updated = await BookingRepository.apply_patch(
            self._db, booking, changes, reschedule=reschedule
        )
        if reschedule:
            logger.info(
                "Booking %d rescheduled (%d/%d)",
                updated.id,
                updated.reschedule_count,
                settings.max_reschedules,
            )
        return ResolvedAccess(
            booking=updated, via_token=access.via_token, identity=access.identity
        )

    async def cancel(
        self,
        booking_id: int,
        *,
        manage_token: str | None = None,
        identity: SessionIdentity | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """Cancel a booking.

        Cancelling an already-canceled booking reports NOT_FOUND. Admin
        sessions skip the cutoff but still cannot cancel completed rides.

        Returns:
            The canceled booking.

        Raises:
            UnauthorizedError: No manage token and no session.
            NotFoundError: Missing, not accessible, or already canceled.
            PolicyViolationError: BOOKING_CLOSED or CANCELLATION_CUTOFF_PASSED.
        """
        now = now or datetime.now(UTC)
        access = await self._resolver.resolve(
            booking_id,
            manage_token=manage_token,
            identity=identity,
            for_update=True,
        )
        booking = access.booking
        if booking.status == "canceled":
            raise NotFoundError("Booking", str(booking_id))

        check_cancel_allowed(
            booking,
            now=now,
            cutoff=timedelta(hours=settings.cancellation_cutoff_hours),
            enforce_cutoff=not access.is_admin,
        )
        canceled = await BookingRepository.mark_canceled(self._db, booking)
        logger.info("Booking %d canceled", canceled.id)
        return canceled

    async def list_bookings(
        self,
        identity: SessionIdentity | None,
        *,
        status: str | None = None,
        pagination: PaginationParams,
    ) -> list[Booking]:
        """List the caller's bookings, newest first.

        Admin sessions see every booking.

        Raises:
            UnauthorizedError: No session.
            ValidationError: Unknown status filter.
        """
        if identity is None:
            raise UnauthorizedError()
        status = validate_status_filter(status)
        if identity.is_admin:
            return await BookingRepository.list_all(
                self._db,
                status=status,
                limit=pagination.limit,
                offset=pagination.offset,
            )
        return await BookingRepository.list_for_owner(
            self._db,
            email=identity.email,
            user_id=identity.user_id,
            status=status,
            limit=pagination.limit,
            offset=pagination.offset,
        )
