"""Account email verification.

register issues a token and emails a link; opening the link marks the
account verified. Login is refused until then. Only the SHA-256 hash of
a token is stored.
"""

import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.user import User
from app.repositories.email_verification_repository import (
    EmailVerificationRepository,
)
from app.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

_TOKEN_BYTES = 32


def hash_verification_token(token: str) -> str:
    """SHA-256 hex digest of a plain verification token."""
    return hashlib.sha256(token.encode()).hexdigest()


class EmailVerificationService:
    """Issues and redeems email verification tokens.

    Args:
        db: Async database session. The caller commits.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def issue(self, user: User, *, now: datetime | None = None) -> str:
        """Create a verification token for an account.

        Returns:
            The plain token, for the emailed link only.
        """
        now = now or datetime.now(UTC)
        token = secrets.token_urlsafe(_TOKEN_BYTES)
        await EmailVerificationRepository.create(
            self._db,
            user_id=user.id,
            token_hash=hash_verification_token(token),
            expires_at=now + timedelta(hours=settings.email_verification_ttl_hours),
        )
        return token

    async def reissue_for_email(
        self, email: str, *, now: datetime | None = None
    ) -> tuple[User, str] | None:
        """Issue a fresh token for an unverified account.

        Returns:
            (user, plain token), or None when there is no such account or
            it is already verified. Callers answer both cases the same way.
        """
        user = await UserRepository.get_by_email(self._db, email)
        if user is None or user.email_verified is not None:
            return None
        return user, await self.issue(user, now=now)

    async def verify(self, token: str, *, now: datetime | None = None) -> User | None:
        """Redeem a verification token.

        Args:
            token: Plain token from the link.
            now: Override for the current time.

        Returns:
            The verified User, or None if the token is unknown, used or
            expired.
        """
        now = now or datetime.now(UTC)
        user_id = await EmailVerificationRepository.consume(
            self._db, token_hash=hash_verification_token(token), now=now
        )
        if user_id is None:
            return None
        await UserRepository.mark_verified(self._db, user_id, now=now)
        user = await self._db.get(User, user_id, populate_existing=True)
        logger.info("Account %d email verified", user_id)
        return user
