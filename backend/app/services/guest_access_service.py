"""Guest access: one-time code and magic link for non-account holders.

Flow:
1. request_access(email): issue a six-digit code (bcrypt-hashed) and a
   magic token (stored as-is) on one record; the caller emails both.
2. verify_code(email, code) or consume_magic(token): redeem the record.
   Both paths share one used_at flag, so redeeming either burns both.
3. issue_session(email): a guest session credential for that email.

A record is usable while used_at is NULL, now < expires_at and
attempts < guest_code_max_attempts. Registered emails are refused on
every path; those users sign in with their password.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import check_secret, hash_guest_code, issue_guest_session
from app.core.config import settings
from app.core.errors import ConflictError
from app.models.guest_access_code import GuestAccessCode
from app.repositories.guest_access_repository import GuestAccessRepository
from app.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

_CODE_MIN = 100_000
_CODE_SPAN = 900_000
_TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedGuestAccess:
    """Plain credentials from request_access, for delivery only.

    Attributes:
        email: Normalized recipient email.
        code: Six-digit code.
        token: Magic link token.
        expires_at: Shared expiry.
    """

    email: str
    code: str
    token: str
    expires_at: datetime

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks
        return f"IssuedGuestAccess(email={self.email!r}, expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class GuestSession:
    """Guest session credential handed back to the client.

    Attributes:
        session_token: Signed credential.
        expires_in: Lifetime in seconds.
    """

    session_token: str
    expires_in: int


def normalize_email(email: str) -> str:
    """Trim and lowercase an email for storage and comparison."""
    return email.strip().lower()


def generate_code() -> str:
    """Six-digit numeric code, never starting with 0."""
    return str(secrets.randbelow(_CODE_SPAN) + _CODE_MIN)


def is_usable(record: GuestAccessCode, *, now: datetime, max_attempts: int) -> bool:
    """Whether a record can still be redeemed."""
    return (
        record.used_at is None
        and now < record.expires_at
        and record.attempts < max_attempts
    )


class GuestAccessService:
    """Issues and redeems guest access codes and magic links.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _reject_registered(self, email: str) -> None:
        if await UserRepository.email_registered(self._db, email):
            raise ConflictError(
                code="REGISTERED_ACCOUNT",
                message="This email belongs to an account. Sign in with your password.",
            )

    async def request_access(
        self,
        email: str,
        *,
        ip: str | None = None,
        now: datetime | None = None,
    ) -> IssuedGuestAccess:
        """Issue a new code and magic token for an email.

        Args:
            email: Guest email.
            ip: Requesting client IP, stored for audit.
            now: Override for the current time.

        Returns:
            IssuedGuestAccess with the plain code and token.

        Raises:
            ConflictError: REGISTERED_ACCOUNT if the email has an account.
        """
        email = normalize_email(email)
        await self._reject_registered(email)

        now = now or datetime.now(UTC)
        code = generate_code()
        token = secrets.token_urlsafe(_TOKEN_BYTES)
        expires_at = now + timedelta(minutes=settings.guest_code_ttl_minutes)

        await GuestAccessRepository.create(
            self._db,
            email=email,
            code_hash=hash_guest_code(code),
            token=token,
            expires_at=expires_at,
            ip_created=ip,
        )
        return IssuedGuestAccess(
            email=email, code=code, token=token, expires_at=expires_at
        )

    async def verify_code(
        self, email: str, code: str, *, now: datetime | None = None
    ) -> bool:
        """Redeem the most recent code issued for an email.

        A wrong code on a usable record counts one attempt. The caller must
        commit before reporting failure so the attempt sticks.

        Args:
            email: Guest email.
            code: Six-digit code from the email.
            now: Override for the current time.

        Returns:
            True if this call redeemed the code.

        Raises:
            ConflictError: REGISTERED_ACCOUNT if the email has an account.
        """
        email = normalize_email(email)
        await self._reject_registered(email)

        now = now or datetime.now(UTC)
        max_attempts = settings.guest_code_max_attempts
        record = await GuestAccessRepository.get_latest_for_email(self._db, email)

        if record is None or not is_usable(record, now=now, max_attempts=max_attempts):
            # Same bcrypt cost whether or not a usable record exists
            check_secret(code, None)
            return False

        if not check_secret(code, record.code_hash):
            attempts = await GuestAccessRepository.increment_attempts(
                self._db, record.id
            )
            if attempts >= max_attempts:
                logger.info("Guest access code locked after %d attempts", attempts)
            return False

        return await GuestAccessRepository.mark_used(
            self._db, record.id, now=now, max_attempts=max_attempts
        )

    async def consume_magic(
        self, token: str, *, now: datetime | None = None
    ) -> str | None:
        """Redeem a magic link token.

        Args:
            token: Token from the magic link.
            now: Override for the current time.

        Returns:
            The guest email on success, None if the token is unknown, used,
            expired or locked out.

        Raises:
            ConflictError: REGISTERED_ACCOUNT if the email has an account.
        """
        now = now or datetime.now(UTC)
        email = await GuestAccessRepository.consume_token(
            self._db,
            token,
            now=now,
            max_attempts=settings.guest_code_max_attempts,
        )
        if email is None:
            return None
        await self._reject_registered(email)
        return email

    @staticmethod
    def issue_session(email: str) -> GuestSession:
        """Mint a guest session credential for a redeemed email."""
        return GuestSession(
            session_token=issue_guest_session(normalize_email(email)),
            expires_in=settings.guest_session_ttl_minutes * 60,
        )
