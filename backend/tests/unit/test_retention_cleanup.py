"""Tests for guard state retention cleanup."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.models.booking_idempotency import BookingIdempotency
from app.models.email_verification_token import EmailVerificationToken
from app.models.guest_access_code import GuestAccessCode
from app.models.rate_limit import RateLimitCounter
from app.services.retention_cleanup import (
    CleanupError,
    cleanup_rate_limits,
    run_all_cleanups,
)

_NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return int(result.scalar_one())


def _code(token: str, *, expires_at: datetime, used_at: datetime | None = None):
    return GuestAccessCode(
        email="guest@example.com",
        code_hash="$2b$10$" + "x" * 53,
        token=token,
        expires_at=expires_at,
        used_at=used_at,
        attempts=0,
    )


class TestRunAllCleanups:
    """Tests for run_all_cleanups against PostgreSQL."""

    @pytest.mark.asyncio
    async def test_deletes_only_stale_rows(self, db_session):
        """Expired counters, expired keys and stale codes go; the rest stay."""
        db_session.add_all(
            [
                RateLimitCounter(
                    key_hash="a" * 64,
                    count=3,
                    window_start=_NOW - timedelta(hours=3),
                    expires_at=_NOW - timedelta(hours=2),
                ),
                RateLimitCounter(
                    key_hash="b" * 64,
                    count=1,
                    window_start=_NOW,
                    expires_at=_NOW + timedelta(hours=1),
                ),
                BookingIdempotency(
                    key_hash="c" * 64,
                    request_hash="e" * 64,
                    expires_at=_NOW - timedelta(minutes=1),
                ),
                BookingIdempotency(
                    key_hash="d" * 64,
                    request_hash="f" * 64,
                    expires_at=_NOW + timedelta(hours=23),
                ),
                # Used 31 days ago: purged
                _code(
                    "t-used-old",
                    expires_at=_NOW - timedelta(days=31),
                    used_at=_NOW - timedelta(days=31),
                ),
                # Expired 8 days ago, never used: purged
                _code("t-expired-old", expires_at=_NOW - timedelta(days=8)),
                # Expired yesterday: kept for now
                _code("t-expired-recent", expires_at=_NOW - timedelta(days=1)),
                # Still live
                _code("t-live", expires_at=_NOW + timedelta(minutes=10)),
            ]
        )
        await db_session.flush()

        result = await run_all_cleanups(db_session, now=_NOW)

        assert result.rate_limits == 1
        assert result.idempotency_records == 1
        assert result.guest_access_codes == 2
        assert await _count(db_session, RateLimitCounter) == 1
        assert await _count(db_session, BookingIdempotency) == 1
        assert await _count(db_session, GuestAccessCode) == 2

    @pytest.mark.asyncio
    async def test_deletes_stale_verification_tokens(self, db_session, rider_user):
        """Verification tokens follow the guest code retention windows."""
        db_session.add_all(
            [
                # Used 31 days ago: purged
                EmailVerificationToken(
                    user_id=rider_user.id,
                    token_hash="1" * 64,
                    expires_at=_NOW - timedelta(days=31),
                    used_at=_NOW - timedelta(days=31),
                ),
                # Expired 8 days ago, never used: purged
                EmailVerificationToken(
                    user_id=rider_user.id,
                    token_hash="2" * 64,
                    expires_at=_NOW - timedelta(days=8),
                ),
                # Used yesterday: kept for now
                EmailVerificationToken(
                    user_id=rider_user.id,
                    token_hash="3" * 64,
                    expires_at=_NOW,
                    used_at=_NOW - timedelta(days=1),
                ),
                # Still live
                EmailVerificationToken(
                    user_id=rider_user.id,
                    token_hash="4" * 64,
                    expires_at=_NOW + timedelta(hours=1),
                ),
            ]
        )
        await db_session.flush()

        result = await run_all_cleanups(db_session, now=_NOW)

        assert result.email_verification_tokens == 2
        assert await _count(db_session, EmailVerificationToken) == 2

    @pytest.mark.asyncio
    async def test_empty_tables(self, db_session):
        """Nothing to delete reports zeros."""
        result = await run_all_cleanups(db_session, now=_NOW)
        assert (
            result.rate_limits,
            result.idempotency_records,
            result.guest_access_codes,
            result.email_verification_tokens,
        ) == (0, 0, 0, 0)


class TestCleanupErrors:
    """Tests for database failure handling."""

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self):
        """SQLAlchemy errors surface as CleanupError."""
        with patch(
            "app.services.retention_cleanup.RateLimitRepository.delete_expired",
            new_callable=AsyncMock,
            side_effect=OperationalError("DELETE", {}, Exception("down")),
        ):
            with pytest.raises(CleanupError) as exc_info:
                await cleanup_rate_limits(AsyncMock(), now=_NOW)
        assert exc_info.value.code == "CLEANUP_ERROR"
