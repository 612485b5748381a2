"""Retention cleanup service.

Purges guard state that no longer affects any decision:
- Rate limit counters past expires_at
- Idempotency records past expires_at
- Guest access codes used more than 30 days ago or expired more than
  7 days ago
- Email verification tokens on the same schedule as guest codes

Run periodically via scripts/purge_expired_guard_state.py. Each job
only deletes; the caller commits.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import APIError
from app.repositories.email_verification_repository import (
    EmailVerificationRepository,
)
from app.repositories.guest_access_repository import GuestAccessRepository
from app.repositories.idempotency_repository import IdempotencyRepository
from app.repositories.rate_limit_repository import RateLimitRepository

logger = logging.getLogger(__name__)

_USED_CODE_RETENTION = timedelta(days=30)
_EXPIRED_CODE_RETENTION = timedelta(days=7)


@dataclass(frozen=True)
class GuardStateCleanupResult:
    """Aggregate result of all cleanup jobs.

    Attributes:
        rate_limits: Expired rate limit counters deleted.
        idempotency_records: Expired idempotency records deleted.
        guest_access_codes: Stale guest access codes deleted.
        email_verification_tokens: Stale email verification tokens deleted.
    """

    rate_limits: int
    idempotency_records: int
    guest_access_codes: int
    email_verification_tokens: int


class CleanupError(APIError):
    """Raised when a cleanup operation fails at the database level."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="CLEANUP_ERROR",
            message=message,
            status_code=500,
        )


async def cleanup_rate_limits(db: AsyncSession, *, now: datetime) -> int:
    """Delete rate limit counters past expires_at.

    Raises:
        CleanupError: If the database operation fails.
    """
    try:
        return await RateLimitRepository.delete_expired(db, now=now)
    except SQLAlchemyError as exc:
        logger.error("Rate limit cleanup failed: %s", exc)
        raise CleanupError("Rate limit cleanup failed") from exc


async def cleanup_idempotency_records(db: AsyncSession, *, now: datetime) -> int:
    """Delete idempotency records past expires_at.

    Raises:
        CleanupError: If the database operation fails.
    """
    try:
        return await IdempotencyRepository.delete_expired(db, now=now)
    except SQLAlchemyError as exc:
        logger.error("Idempotency record cleanup failed: %s", exc)
        raise CleanupError("Idempotency record cleanup failed") from exc


async def cleanup_guest_access_codes(db: AsyncSession, *, now: datetime) -> int:
    """Delete codes used over 30 days ago or expired over 7 days ago.

    Args:
        db: Database session.
        now: Reference time.

    Returns:
        Number of codes deleted.

    Raises:
        CleanupError: If the database operation fails.
    """
    try:
        return await GuestAccessRepository.delete_stale(
            db,
            used_before=now - _USED_CODE_RETENTION,
            expired_before=now - _EXPIRED_CODE_RETENTION,
        )
    except SQLAlchemyError as exc:
        logger.error("Guest access code cleanup failed: %s", exc)
        raise CleanupError("Guest access code cleanup failed") from exc


async def cleanup_email_verification_tokens(
    db: AsyncSession, *, now: datetime
) -> int:
    """Delete verification tokens used over 30 days ago or expired over 7 days ago.

    Raises:
        CleanupError: If the database operation fails.
    """
    try:
        return await EmailVerificationRepository.delete_stale(
            db,
            used_before=now - _USED_CODE_RETENTION,
            expired_before=now - _EXPIRED_CODE_RETENTION,
        )
    except SQLAlchemyError as exc:
        logger.error("Email verification token cleanup failed: %s", exc)
        raise CleanupError("Email verification token cleanup failed") from exc


async def run_all_cleanups(
    db: AsyncSession, *, now: datetime | None = None
) -> GuardStateCleanupResult:
    """Run all cleanup jobs and return aggregate results.

    Args:
        db: Database session.
        now: Override for the current time.

    Returns:
        GuardStateCleanupResult with counts from all cleanup categories.

    Raises:
        CleanupError: If the database operation fails.
    """
    now = now or datetime.now(UTC)
    result = GuardStateCleanupResult(
        rate_limits=await cleanup_rate_limits(db, now=now),
        idempotency_records=await cleanup_idempotency_records(db, now=now),
        guest_access_codes=await cleanup_guest_access_codes(db, now=now),
        email_verification_tokens=await cleanup_email_verification_tokens(
            db, now=now
        ),
    )
    logger.info(
        "Guard state cleanup: %d rate limits, %d idempotency records, "
        "%d guest access codes, %d email verification tokens",
        result.rate_limits,
        result.idempotency_records,
        result.guest_access_codes,
        result.email_verification_tokens,
    )
    return result
