"""Purge expired guard state.

Standalone maintenance script. Deletes expired rate limit counters,
expired idempotency records, and stale guest access codes and email
verification tokens (used over 30 days ago or expired over 7 days ago).

Usage:
    cd backend && python -m scripts.purge_expired_guard_state

Schedule it (cron, systemd timer) hourly or daily; it is safe to run
concurrently with the API.
"""

import logging

from app.services.retention_cleanup import run_all_cleanups

logger = logging.getLogger(__name__)


async def main() -> None:
    """CLI entry point: purge against the configured database."""
    import sys

    from sqlalchemy.ext.asyncio import (
        AsyncSession,
        async_sessionmaker,
        create_async_engine,
    )

    from app.core.config import settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_async_engine(settings.database_url, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        result = await run_all_cleanups(session)
        await session.commit()

    await engine.dispose()

    logger.info("Final stats: %s", result)
    sys.exit(0)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
