"""Booking policy rules.

Pure functions with no DB access: field range checks, the reschedule
cap and the cancellation cutoff. BookingLifecycle loads and locks the
booking, calls these, then writes.

Rules:
1. passengers in [1, 8], luggages in [0, 10], ride_type per_ride|hourly.
2. scheduled_at strictly in the future (on create and on reschedule).
3. At most max_reschedules changes to scheduled_at, never on a closed booking.
4. Cancel only while open and before scheduled_at - cutoff (admins skip
   the cutoff).
"""

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from app.core.errors import PolicyViolationError, ValidationError
from app.models.booking import BOOKING_STATUSES, RIDE_TYPES, Booking

# =============================================================================
# Constants
# =============================================================================

MIN_PASSENGERS = 1
MAX_PASSENGERS = 8
MIN_LUGGAGES = 0
MAX_LUGGAGES = 10


# =============================================================================
# Field validation
# =============================================================================


def _field_error(field: str, message: str) -> ValidationError:
    return ValidationError(
        message=message,
        details=[{"field": field, "message": message}],
    )


def validate_booking_fields(fields: Mapping[str, Any], *, now: datetime) -> None:
    """Check every present trip field against its allowed range.

    Absent fields are skipped, so the same check serves create and patch.

    Args:
        fields: Field names and candidate values.
        now: Reference time for the future-only scheduled_at rule.

    Raises:
        ValidationError: On the first out-of-range field.
    """
    passengers = fields.get("passengers")
    if passengers is not None and not (
        MIN_PASSENGERS <= passengers <= MAX_PASSENGERS
    ):
        raise _field_error(
            "passengers",
            f"passengers must be between {MIN_PASSENGERS} and {MAX_PASSENGERS}",
        )

    luggages = fields.get("luggages")
    if luggages is not None and not (MIN_LUGGAGES <= luggages <= MAX_LUGGAGES):
        raise _field_error(
            "luggages",
            f"luggages must be between {MIN_LUGGAGES} and {MAX_LUGGAGES}",
        )

    ride_type = fields.get("ride_type")
    if ride_type is not None and ride_type not in RIDE_TYPES:
        raise _field_error("ride_type", "ride_type must be per_ride or hourly")

    scheduled_at = fields.get("scheduled_at")
    if scheduled_at is not None:
        if scheduled_at.tzinfo is None:
            raise _field_error("scheduled_at", "scheduled_at must include a timezone")
        if scheduled_at <= now:
            raise _field_error("scheduled_at", "scheduled_at must be in the future")


def validate_status_filter(status: str | None) -> str | None:
    """Reject unknown status filters; None means no filter."""
    if status is None:
        return None
    if status not in BOOKING_STATUSES:
        raise _field_error(
            "status", f"status must be one of: {', '.join(BOOKING_STATUSES)}"
        )
    return status


# =============================================================================
# State transitions
# =============================================================================


def is_reschedule(booking: Booking, new_scheduled_at: datetime | None) -> bool:
    """True when a patch actually moves the pickup time."""
    return new_scheduled_at is not None and new_scheduled_at != booking.scheduled_at


def check_reschedule_allowed(booking: Booking, *, max_reschedules: int) -> None:
    """Enforce the reschedule cap and the closed-booking rule.

    Raises:
        PolicyViolationError: BOOKING_CLOSED or RESCHEDULE_LIMIT_REACHED.
    """
    if booking.is_closed:
        raise PolicyViolationError(
            code="BOOKING_CLOSED",
            message=f"Booking is {booking.status} and cannot be rescheduled",
        )
    if booking.reschedule_count >= max_reschedules:
        raise PolicyViolationError(
            code="RESCHEDULE_LIMIT_REACHED",
            message=f"Booking can be rescheduled at most {max_reschedules} times",
        )


def check_cancel_allowed(
    booking: Booking,
    *,
    now: datetime,
    cutoff: timedelta,
    enforce_cutoff: bool = True,
) -> None:
    """Enforce the cancellation window.

    Callers handle already-canceled bookings (reported as not found)
    before calling this.

    Args:
        booking: Locked booking row.
        now: Reference time.
        cutoff: Minimum lead time before scheduled_at.
        enforce_cutoff: False for admin cancellation.

    Raises:
        PolicyViolationError: BOOKING_CLOSED or CANCELLATION_CUTOFF_PASSED.
    """
    if booking.is_closed:
        raise PolicyViolationError(
            code="BOOKING_CLOSED",
            message=f"Booking is {booking.status} and cannot be canceled",
        )
    if enforce_cutoff and now >= booking.scheduled_at - cutoff:
        hours = int(cutoff.total_seconds() // 3600)
        raise PolicyViolationError(
            code="CANCELLATION_CUTOFF_PASSED",
            message=f"Bookings can only be canceled more than {hours} hours before pickup",
        )
