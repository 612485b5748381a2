"""Per-request booking authorization.

Resolution order:
1. A manage_token matching the booking grants full access to that one
   booking, whatever session (if any) accompanies it.
2. Otherwise a verified session must own the booking: rider_email matches
   the session email case-insensitively, or the booking is linked to the
   session's user_id. Admin sessions may access any booking.

A valid session that does not own the booking gets NOT_FOUND, never a
hint that the booking exists.
"""

import hmac
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import SessionIdentity
from app.core.errors import NotFoundError, UnauthorizedError
from app.models.booking import Booking
from app.repositories.booking_repository import BookingRepository


@dataclass(frozen=True)
class ResolvedAccess:
    """A booking plus how the caller got to it.

    Attributes:
        booking: The booking row (locked when resolved for update).
        via_token: True for manage-token access. Session responses must
            not include the manage token.
        identity: The session identity, when access came from a session.
    """

    booking: Booking
    via_token: bool
    identity: SessionIdentity | None = None

    @property
    def is_admin(self) -> bool:
        """True when access rests on an admin session rather than a token."""
        return (
            not self.via_token
            and self.identity is not None
            and self.identity.is_admin
        )


def owns_booking(identity: SessionIdentity, booking: Booking) -> bool:
    """Whether a session identity owns a booking."""
    if identity.user_id is not None and booking.user_id == identity.user_id:
        return True
    return booking.rider_email.strip().lower() == identity.email.strip().lower()


class AuthorizationResolver:
    """Decides whether the caller may act on a booking.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def resolve(
        self,
        booking_id: int,
        *,
        manage_token: str | None,
        identity: SessionIdentity | None,
        for_update: bool = False,
    ) -> ResolvedAccess:
        """Load a booking the caller may access.

        Args:
            booking_id: Booking primary key.
            manage_token: Capability secret from the request, if any.
            identity: Verified session identity, if any.
            for_update: Lock the row for a following mutation.

        Returns:
            ResolvedAccess for the booking.

        Raises:
            UnauthorizedError: Neither a manage token nor a session was given.
            NotFoundError: Booking missing, token mismatch or not owned.
        """
        if not manage_token and identity is None:
            raise UnauthorizedError("Provide a manage token or a session")

        booking = await BookingRepository.get_by_id(
            self._db, booking_id, for_update=for_update
        )
        if booking is None:
            raise NotFoundError("Booking", str(booking_id))

        if manage_token and hmac.compare_digest(
            manage_token.encode(), booking.manage_token.encode()
        ):
            return ResolvedAccess(booking=booking, via_token=True, identity=identity)

        if identity is not None and (identity.is_admin or owns_booking(identity, booking)):
            return ResolvedAccess(booking=booking, via_token=False, identity=identity)

        raise NotFoundError("Booking", str(booking_id))
