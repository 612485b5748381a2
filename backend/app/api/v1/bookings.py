"""Booking endpoints.

Endpoints:
- POST /bookings: anonymous create (rate-limited by IP, Idempotency-Key)
- POST /bookings/me: create linked to the signed-in account
- GET /bookings: list the session's bookings
- GET/PATCH/DELETE /bookings/{id}: manage_token or session access

manage_token is returned on creation and on token-authenticated reads
and writes; session-authenticated responses never include it.
"""

from fastapi import APIRouter, Depends, Header, Query, Response

from app.api.deps import ClientIp, CurrentUser, DbSession, Limiter, OptionalIdentity
from app.core.config import settings
from app.core.pagination import PaginationParams, pagination_params
from app.core.rate_limiting import rate_limit_key
from app.core.responses import DataResponse, ListResponse, PaginationMeta
from app.schemas.booking import (
    BookingCreate,
    BookingCreatedResponse,
    BookingCreateForUser,
    BookingPatch,
    BookingResponse,
)
from app.services.booking_lifecycle import BookingLifecycle, CreatedBooking

router = APIRouter()

_MANAGE_TOKEN_QUERY = Query(
    default=None,
    max_length=128,
    description="Per-booking capability secret from the creation response",
)


def _created(result: CreatedBooking) -> DataResponse[BookingCreatedResponse]:
    booking = result.booking
    return DataResponse(
        data=BookingCreatedResponse(
            id=booking.id,
            manage_token=booking.manage_token,
            status=booking.status,
            scheduled_at=booking.scheduled_at,
        )
    )


# ===================================================================
# Create
# ===================================================================


@router.post("", status_code=201)
async def create_booking(
    body: BookingCreate,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> DataResponse[BookingCreatedResponse]:
    """Create a guest booking.

    Replays with the same Idempotency-Key return the original booking.

    Rate limit: booking_create_rate_limit per window, per IP.
    """
    await limiter.enforce(
        [rate_limit_key("booking_create", "ip", ip)],
        settings.booking_create_rate_limit,
        settings.booking_create_rate_window_seconds,
    )

    result = await BookingLifecycle(db).create_guest(
        body, idempotency_key=idempotency_key
    )
    await db.commit()
    return _created(result)


@router.post("/me", status_code=201)
async def create_my_booking(
    body: BookingCreateForUser,
    user: CurrentUser,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> DataResponse[BookingCreatedResponse]:
    """Create a booking for the signed-in account."""
    await limiter.enforce(
        [rate_limit_key("booking_create", "ip", ip)],
        settings.booking_create_rate_limit,
        settings.booking_create_rate_window_seconds,
    )

    result = await BookingLifecycle(db).create_for_user(
        user, body, idempotency_key=idempotency_key
    )
    await db.commit()
    return _created(result)


# ===================================================================
# List
# ===================================================================


@router.get("")
async def list_bookings(
    identity: OptionalIdentity,
    db: DbSession,
    status: str | None = Query(default=None, description="Filter by status"),
    pagination: PaginationParams = Depends(pagination_params),
) -> ListResponse[BookingResponse]:
    """List the session's bookings, newest first."""
    bookings = await BookingLifecycle(db).list_bookings(
        identity, status=status, pagination=pagination
    )
    return ListResponse(
        data=[
            BookingResponse.from_booking(b, include_token=False) for b in bookings
        ],
        meta=PaginationMeta(
            limit=pagination.limit, offset=pagination.offset, count=len(bookings)
        ),
    )


# ===================================================================
# Read / update / cancel
# ===================================================================


@router.get("/{booking_id}")
async def get_booking(
    booking_id: int,
    identity: OptionalIdentity,
    db: DbSession,
    manage_token: str | None = _MANAGE_TOKEN_QUERY,
) -> DataResponse[BookingResponse]:
    """Fetch one booking."""
    access = await BookingLifecycle(db).get(
        booking_id, manage_token=manage_token, identity=identity
    )
    return DataResponse(
        data=BookingResponse.from_booking(
            access.booking, include_token=access.via_token
        )
    )


@router.patch("/{booking_id}")
async def patch_booking(
    booking_id: int,
    body: BookingPatch,
    identity: OptionalIdentity,
    db: DbSession,
    manage_token: str | None = _MANAGE_TOKEN_QUERY,
) -> DataResponse[BookingResponse]:
    """Update the supplied fields of a booking.

    Changing scheduled_at counts as a reschedule (at most max_reschedules).
    """
    access = await BookingLifecycle(db).patch(
        booking_id,
        body.changes(),
        manage_token=manage_token,
        identity=identity,
    )
    await db.commit()
    return DataResponse(
        data=BookingResponse.from_booking(
            access.booking, include_token=access.via_token
        )
    )


@router.delete("/{booking_id}", status_code=204)
async def cancel_booking(
    booking_id: int,
    identity: OptionalIdentity,
    db: DbSession,
    manage_token: str | None = _MANAGE_TOKEN_QUERY,
) -> Response:
    """Cancel a booking. A second cancel returns 404."""
    await BookingLifecycle(db).cancel(
        booking_id, manage_token=manage_token, identity=identity
    )
    await db.commit()
    return Response(status_code=204)
