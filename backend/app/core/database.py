"""Async database engine and session management.

Configures the SQLAlchemy async engine with connection pooling and a
bounded per-statement timeout, and provides dependency injection for
database sessions.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
    pool_timeout=settings.database_pool_timeout_seconds,
    # asyncpg: per-statement deadline so no query blocks indefinitely
    connect_args={"command_timeout": settings.database_command_timeout_seconds},
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
