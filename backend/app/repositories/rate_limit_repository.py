"""Repository for fixed-window rate limit counters.

One upsert per hit: the row is created, reset or incremented inside a
single INSERT ... ON CONFLICT DO UPDATE so concurrent hits on the same key
serialize on the row lock and never lose an increment.
"""

from datetime import datetime, timedelta

from sqlalchemy import case, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.rate_limit import RateLimitCounter

# Rows outlive their window by at least this long before purge
_MIN_ROW_TTL = timedelta(hours=1)


class RateLimitRepository:
    """Stateless repository for rate_limits operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def hit(
        db: AsyncSession,
        *,
        key_hash: str,
        window: timedelta,
        now: datetime,
    ) -> tuple[int, datetime]:
        """Record one request against a key.

        Starts a fresh window (count=1, window_start=now) when no row
        exists or the stored window started before now - window;
        otherwise increments the count.

        Args:
            db: Async database session.
            key_hash: SHA-256 hex digest of the rate limit key.
            window: Window duration.
            now: Request time.

        Returns:
            Tuple of (count after this hit, window_start).
        """
        expires_at = now + max(window, _MIN_ROW_TTL)
        window_expired = RateLimitCounter.window_start < now - window

        stmt = pg_insert(RateLimitCounter).values(
            key_hash=key_hash,
            count=1,
            window_start=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimitCounter.key_hash],
            set_={
                "count": case(
                    (window_expired, 1),
                    else_=RateLimitCounter.count + 1,
                ),
                "window_start": case(
                    (window_expired, stmt.excluded.window_start),
                    else_=RateLimitCounter.window_start,
                ),
                "expires_at": stmt.excluded.expires_at,
            },
        ).returning(RateLimitCounter.count, RateLimitCounter.window_start)
        result = await db.execute(stmt)
        count, window_start = result.one()
        return int(count), window_start

    @staticmethod
    async def delete_expired(db: AsyncSession, *, now: datetime) -> int:
        """Delete counters past expires_at.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(RateLimitCounter).where(RateLimitCounter.expires_at < now)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
