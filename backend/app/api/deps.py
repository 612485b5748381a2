"""Shared dependencies for API endpoints.

Session credentials are read from ``Authorization: Bearer <token>`` or,
for links opened outside the app, the ``session_token`` query parameter.

WHY DEPENDENCY INJECTION:
- Consistent auth across all endpoints
- Testable with mocked dependencies (rate limiter, sessions)
"""

from typing import Annotated

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import ROLE_ADMIN, SessionIdentity, verify_session_token
from app.core.database import get_db
from app.core.errors import ForbiddenError, UnauthorizedError
from app.core.rate_limiting import client_ip
from app.models import User
from app.repositories.user_repository import UserRepository
from app.services.rate_limiter import RateLimiter

_BEARER_PREFIX = "bearer "

_rate_limiter = RateLimiter()


def _extract_session_token(request: Request, session_token: str | None) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith(_BEARER_PREFIX):
        token = header[len(_BEARER_PREFIX) :].strip()
        if token:
            return token
    return session_token or None


def get_optional_identity(
    request: Request,
    session_token: Annotated[
        str | None,
        Query(description="Session credential, when a header cannot be sent"),
    ] = None,
) -> SessionIdentity | None:
    """Verified session identity, or None.

    A missing or invalid credential both yield None: endpoints that also
    accept a manage token decide for themselves whether that is a 401.

    Args:
        request: HTTP request (injected by FastAPI).
        session_token: Optional query parameter credential.

    Returns:
        SessionIdentity if a valid credential was presented.
    """
    token = _extract_session_token(request, session_token)
    if token is None:
        return None
    try:
        return verify_session_token(token)
    except UnauthorizedError:
        return None


def get_required_identity(
    identity: Annotated[SessionIdentity | None, Depends(get_optional_identity)],
) -> SessionIdentity:
    """Verified session identity.

    Raises:
        UnauthorizedError: No valid session credential.
    """
    if identity is None:
        raise UnauthorizedError()
    return identity


def get_admin_identity(
    identity: Annotated[SessionIdentity, Depends(get_required_identity)],
) -> SessionIdentity:
    """Verified admin session identity.

    Raises:
        UnauthorizedError: No valid session credential.
        ForbiddenError: Session role is not admin.
    """
    if identity.role != ROLE_ADMIN:
        raise ForbiddenError("Admin access required")
    return identity


async def get_current_user(
    identity: Annotated[SessionIdentity, Depends(get_required_identity)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Full User for an account session.

    Raises:
        UnauthorizedError: Guest session, or the account no longer exists.
    """
    if identity.user_id is None:
        raise UnauthorizedError("Sign in with an account to use this endpoint")
    user = await UserRepository.get_by_id(db, identity.user_id)
    if user is None:
        raise UnauthorizedError()
    return user


def get_rate_limiter() -> RateLimiter:
    """Process-wide rate limiter (overridden in tests)."""
    return _rate_limiter


def get_client_ip(request: Request) -> str:
    """Client IP for rate limiting and audit."""
    return client_ip(request)


# Reusable type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
OptionalIdentity = Annotated[SessionIdentity | None, Depends(get_optional_identity)]
AdminIdentity = Annotated[SessionIdentity, Depends(get_admin_identity)]
CurrentUser = Annotated[User, Depends(get_current_user)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
ClientIp = Annotated[str, Depends(get_client_ip)]
