import socket
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.auth import hash_password, issue_session_token
from app.core.config import settings
from app.models import Base, Booking, User

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow

TEST_PASSWORD = "correct-horse-battery"  # nosec B105
RIDER_EMAIL = "rider@example.com"
ADMIN_EMAIL = "admin@example.com"
GUEST_EMAIL = "guest@example.com"


def create_test_session_token(
    email: str = GUEST_EMAIL,
    *,
    role: str = "guest",
    user_id: int | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session credential for test authentication.

    Args:
        email: Email the session is scoped to.
        role: guest, rider or admin.
        user_id: Account id (required for rider/admin).
        expires_delta: Time until expiration. Defaults to 30 minutes.
            Negative values produce an already-expired credential.

    Returns:
        Encoded JWT string signed with TEST_AUTH_SECRET.
    """
    return issue_session_token(
        email=email,
        role=role,
        user_id=user_id,
        ttl=expires_delta or timedelta(minutes=30),
        secret=TEST_AUTH_SECRET,
    )


def bearer(token: str) -> dict[str, str]:
    """Authorization header for a session credential."""
    return {"Authorization": f"Bearer {token}"}


def make_booking(**overrides) -> Booking:
    """Unsaved Booking with valid defaults, scheduled three days out."""
    fields = {
        "manage_token": "tok-" + "x" * 40,
        "status": "pending",
        "rider_name": "Guest Rider",
        "rider_email": GUEST_EMAIL,
        "pickup": "1 Airport Way",
        "dropoff": "2 Hotel Row",
        "scheduled_at": datetime.now(UTC) + timedelta(days=3),
        "passengers": 2,
        "luggages": 1,
        "ride_type": "per_ride",
        "reschedule_count": 0,
    }
    fields.update(overrides)
    return Booking(**fields)


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    Provides clear skip message to help diagnose CI/local issues.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def test_auth_secret() -> Iterator[None]:
    """Sign and verify session credentials with the test secret."""
    original = settings.auth_secret
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    yield
    settings.auth_secret = original


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    original_enabled = settings.rate_limit_enabled
    settings.rate_limit_enabled = False

    yield

    settings.rate_limit_enabled = original_enabled


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def rider_user(db_session: AsyncSession) -> User:
    """Registered rider account."""
    user = User(
        email=RIDER_EMAIL,
        name="Rita Rider",
        phone="+15550100",
        password_hash=hash_password(TEST_PASSWORD),
        role="rider",
        email_verified=datetime.now(UTC),
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    """Registered admin account."""
    user = User(
        email=ADMIN_EMAIL,
        name="Ada Admin",
        password_hash=hash_password(TEST_PASSWORD),
        role="admin",
        email_verified=datetime.now(UTC),
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test database.

    Sets up:
    - get_db override with the same commit/rollback contract as production
    - a RateLimiter bound to the test database
    - httpx.AsyncClient with ASGI transport

    Yields:
        AsyncClient for making API requests.
    """
    from app.api.deps import get_rate_limiter
    from app.core.database import get_db
    from app.main import app
    from app.services.rate_limiter import RateLimiter

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_limiter = RateLimiter(session_factory)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: test_limiter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
