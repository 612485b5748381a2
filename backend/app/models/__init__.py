"""SQLAlchemy ORM models for the booking service.

All models are exported from this module for convenient imports:
    from app.models import Booking, GuestAccessCode, User, ...

Models are organized by domain:
- user.py: User (Tier 0)
- booking.py: Booking (Tier 1 - optional FK to users)
- booking_idempotency.py: BookingIdempotency (Tier 2 - FK to bookings)
- email_verification_token.py: EmailVerificationToken (Tier 1 - FK to users)
- guest_access_code.py: GuestAccessCode (Tier 0 - guest auth)
- rate_limit.py: RateLimitCounter (Tier 0 - guard state)
"""

from app.models.base import Base, TimestampMixin
from app.models.booking import Booking
from app.models.booking_idempotency import BookingIdempotency
from app.models.email_verification_token import EmailVerificationToken
from app.models.guest_access_code import GuestAccessCode
from app.models.rate_limit import RateLimitCounter
from app.models.user import User

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Tier 0
    "User",
    "GuestAccessCode",
    "RateLimitCounter",
    # Tier 1
    "Booking",
    "EmailVerificationToken",
    # Tier 2
    "BookingIdempotency",
]
