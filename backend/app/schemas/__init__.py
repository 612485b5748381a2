"""Pydantic request/response schemas for API endpoints."""

from app.schemas.booking import (
    BookingCreate,
    BookingCreatedResponse,
    BookingCreateForUser,
    BookingPatch,
    BookingResponse,
)

__all__ = [
    # Requests
    "BookingCreate",
    "BookingCreateForUser",
    "BookingPatch",
    # Responses
    "BookingCreatedResponse",
    "BookingResponse",
]
