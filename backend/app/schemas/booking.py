"""Booking request/response schemas.

Range limits come from app.services.booking_policy so HTTP validation
and service-level validation enforce the same bounds.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    SerializerFunctionWrapHandler,
    model_serializer,
)

from app.services.booking_policy import (
    MAX_LUGGAGES,
    MAX_PASSENGERS,
    MIN_LUGGAGES,
    MIN_PASSENGERS,
)

RideType = Literal["per_ride", "hourly"]

# =============================================================================
# Requests
# =============================================================================


class BookingCreate(BaseModel):
    """Request body for POST /bookings.

    Attributes:
        rider_name: Rider display name.
        rider_email: Contact email; owns the booking for guest sessions.
        rider_phone: Optional phone.
        pickup: Pickup address.
        dropoff: Dropoff address.
        scheduled_at: Pickup time with timezone, strictly in the future.
        notes: Optional free-form notes.
        passengers: 1-8.
        luggages: 0-10.
        ride_type: "per_ride" or "hourly".
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    rider_name: str = Field(min_length=1, max_length=255)
    rider_email: EmailStr
    rider_phone: str | None = Field(default=None, max_length=32)
    pickup: str = Field(min_length=1, max_length=255)
    dropoff: str = Field(min_length=1, max_length=255)
    scheduled_at: AwareDatetime
    notes: str | None = Field(default=None, max_length=2000)
    passengers: int = Field(default=1, ge=MIN_PASSENGERS, le=MAX_PASSENGERS)
    luggages: int = Field(default=0, ge=MIN_LUGGAGES, le=MAX_LUGGAGES)
    ride_type: RideType = "per_ride"


class BookingCreateForUser(BaseModel):
    """Request body for POST /bookings/me.

    Rider identity fields are optional; the account's values win.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    rider_name: str | None = Field(default=None, min_length=1, max_length=255)
    rider_phone: str | None = Field(default=None, max_length=32)
    pickup: str = Field(min_length=1, max_length=255)
    dropoff: str = Field(min_length=1, max_length=255)
    scheduled_at: AwareDatetime
    notes: str | None = Field(default=None, max_length=2000)
    passengers: int = Field(default=1, ge=MIN_PASSENGERS, le=MAX_PASSENGERS)
    luggages: int = Field(default=0, ge=MIN_LUGGAGES, le=MAX_LUGGAGES)
    ride_type: RideType = "per_ride"


class BookingPatch(BaseModel):
    """Request body for PATCH /bookings/{id}.

    Only fields present (and not null) are applied. rider_email is not
    patchable: it anchors guest ownership.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    rider_name: str | None = Field(default=None, min_length=1, max_length=255)
    rider_phone: str | None = Field(default=None, max_length=32)
    pickup: str | None = Field(default=None, min_length=1, max_length=255)
    dropoff: str | None = Field(default=None, min_length=1, max_length=255)
    scheduled_at: AwareDatetime | None = None
    notes: str | None = Field(default=None, max_length=2000)
    passengers: int | None = Field(default=None, ge=MIN_PASSENGERS, le=MAX_PASSENGERS)
    luggages: int | None = Field(default=None, ge=MIN_LUGGAGES, le=MAX_LUGGAGES)
    ride_type: RideType | None = None

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually supplied."""
        return self.model_dump(exclude_none=True)


# =============================================================================
# Responses
# =============================================================================


class BookingResponse(BaseModel):
    """Booking as returned by the API.

    manage_token is only populated for capability-token access and for
    the creation response; it is dropped from the JSON otherwise.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    rider_name: str
    rider_email: str
    rider_phone: str | None = None
    pickup: str
    dropoff: str
    scheduled_at: datetime
    notes: str | None = None
    passengers: int
    luggages: int
    ride_type: str
    user_id: int | None = None
    driver_id: int | None = None
    reschedule_count: int
    created_at: datetime
    updated_at: datetime
    manage_token: str | None = None

    @classmethod
    def from_booking(cls, booking: Any, *, include_token: bool) -> "BookingResponse":
        """Build a response, keeping manage_token only when include_token is set."""
        response = cls.model_validate(booking)
        if include_token:
            return response
        return response.model_copy(update={"manage_token": None})

    @model_serializer(mode="wrap")
    def _omit_absent_token(
        self, handler: SerializerFunctionWrapHandler
    ) -> dict[str, Any]:
        data = handler(self)
        if data.get("manage_token") is None:
            data.pop("manage_token", None)
        return data


class BookingCreatedResponse(BaseModel):
    """Response for POST /bookings and POST /bookings/me."""

    id: int
    manage_token: str
    status: str
    scheduled_at: datetime
