"""Admin API router.

Booking oversight for admin sessions: list every booking, read and
update any booking, and cancel without the rider cutoff. Completed bookings still
cannot be canceled.

All endpoints require the AdminIdentity dependency.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import AdminIdentity, DbSession
from app.core.pagination import PaginationParams, pagination_params
from app.core.responses import DataResponse, ListResponse, PaginationMeta
from app.schemas.booking import BookingPatch, BookingResponse
from app.services.booking_lifecycle import BookingLifecycle

router = APIRouter()

StatusFilter = Annotated[
    str | None,
    Query(max_length=20, description="Filter by booking status"),
]


@router.get("/bookings")
async def list_all_bookings(
    admin: AdminIdentity,
    db: DbSession,
    status: StatusFilter = None,
    pagination: PaginationParams = Depends(pagination_params),
) -> ListResponse[BookingResponse]:
    """List all bookings, newest first."""
    bookings = await BookingLifecycle(db).list_bookings(
        admin, status=status, pagination=pagination
    )
    return ListResponse(
        data=[
            BookingResponse.from_booking(b, include_token=False) for b in bookings
        ],
        meta=PaginationMeta(
            limit=pagination.limit, offset=pagination.offset, count=len(bookings)
        ),
    )


@router.get("/bookings/{booking_id}")
async def get_any_booking(
    booking_id: int,
    admin: AdminIdentity,
    db: DbSession,
) -> DataResponse[BookingResponse]:
    """Fetch any booking."""
    access = await BookingLifecycle(db).get(booking_id, identity=admin)
    return DataResponse(
        data=BookingResponse.from_booking(access.booking, include_token=False)
    )


@router.patch("/bookings/{booking_id}")
async def update_any_booking(
    booking_id: int,
    body: BookingPatch,
    admin: AdminIdentity,
    db: DbSession,
) -> DataResponse[BookingResponse]:
    """Update the supplied fields of any booking.

    Field checks and the reschedule cap apply as for riders.
    """
    access = await BookingLifecycle(db).patch(booking_id, body.changes(), identity=admin)
    await db.commit()
    return DataResponse(
        data=BookingResponse.from_booking(access.booking, include_token=False)
    )


@router.delete("/bookings/{booking_id}", status_code=204)
async def cancel_any_booking(
    booking_id: int,
    admin: AdminIdentity,
    db: DbSession,
) -> Response:
    """Cancel any open booking, ignoring the cancellation cutoff."""
    await BookingLifecycle(db).cancel(booking_id, identity=admin)
    await db.commit()
    return Response(status_code=204)
