"""Fixed-window rate limiter backed by the rate_limits table.

Each hit runs in its own short session and commits immediately, so a
counter increment survives even when the request it guards later fails
and rolls back.

Store failures fail open by default (settings.rate_limit_fail_open):
availability wins over strictness. Set RATE_LIMIT_FAIL_OPEN=false to
reject requests instead when the counter store is unreachable.
"""

import hashlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import async_session_factory
from app.core.errors import RateLimitedError
from app.repositories.rate_limit_repository import RateLimitRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        retry_after: Seconds until the window resets (0 when allowed).
    """

    allowed: bool
    retry_after: int = 0


_ALLOW = RateLimitDecision(allowed=True)


def hash_key(key: str) -> str:
    """SHA-256 hex digest of a rate limit key. Raw keys are never stored."""
    return hashlib.sha256(key.encode()).hexdigest()


class RateLimiter:
    """Atomic fixed-window counter per key.

    Args:
        session_factory: Factory for the limiter's own short-lived sessions.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ) -> None:
        self._session_factory = session_factory

    async def allow(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        *,
        now: datetime | None = None,
    ) -> RateLimitDecision:
        """Count one request against key and decide.

        Args:
            key: Unhashed rate limit key (e.g. "guest_access:ip:1.2.3.4").
            limit: Requests allowed per window.
            window_seconds: Window length.
            now: Override for the current time.

        Returns:
            RateLimitDecision; allowed iff the count after this hit <= limit.
        """
        if not settings.rate_limit_enabled:
            return _ALLOW

        now = now or datetime.now(UTC)
        window = timedelta(seconds=window_seconds)
        try:
            async with self._session_factory() as session:
                count, window_start = await RateLimitRepository.hit(
                    session, key_hash=hash_key(key), window=window, now=now
                )
                await session.commit()
        except (SQLAlchemyError, OSError, TimeoutError) as exc:
            if settings.rate_limit_fail_open:
                logger.warning(
                    "Rate limit store unavailable, failing open: %s",
                    type(exc).__name__,
                )
                return _ALLOW
            logger.warning(
                "Rate limit store unavailable, failing closed: %s",
                type(exc).__name__,
            )
            return RateLimitDecision(allowed=False, retry_after=window_seconds)

        if count <= limit:
            return _ALLOW
        remaining = (window_start + window - now).total_seconds()
        return RateLimitDecision(allowed=False, retry_after=max(1, int(remaining)))

    async def allow_all(
        self,
        keys: Iterable[str],
        limit: int,
        window_seconds: int,
        *,
        now: datetime | None = None,
    ) -> RateLimitDecision:
        """Check several independent keys; reject if any one is over.

        Keys are checked in order and checking stops at the first rejection.
        """
        for key in keys:
            decision = await self.allow(key, limit, window_seconds, now=now)
            if not decision.allowed:
                return decision
        return _ALLOW

    async def enforce(
        self,
        keys: Iterable[str],
        limit: int,
        window_seconds: int,
    ) -> None:
        """Like allow_all, but raise instead of returning a decision.

        Raises:
            RateLimitedError: When any key is over its limit.
        """
        decision = await self.allow_all(keys, limit, window_seconds)
        if not decision.allowed:
            raise RateLimitedError(retry_after=decision.retry_after)
