"""Rate limit keying and 429 response handling.

Counters themselves live in PostgreSQL (see app.services.rate_limiter)
so every API instance shares one view of the window. This module builds
the keys those counters use and renders RATE_LIMITED responses.

Key format:
- "guest_access:ip:{ip}" / "guest_access:email:{email}"
- "guest_verify:ip:{ip}"
- "booking_create:ip:{ip}"
- "login:ip:{ip}"

Usage in routers:
    from app.core.rate_limiting import rate_limit_key

    key = rate_limit_key("booking_create", "ip", client_ip(request))
"""

from fastapi import Request, Response
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from app.core.errors import RateLimitedError
from app.core.responses import ErrorDetail, ErrorResponse


def client_ip(request: Request) -> str:
    """Get the client IP for rate limit keying.

    Uses the socket peer address. Behind a reverse proxy, run uvicorn with
    --proxy-headers so the peer reflects X-Forwarded-For.
    """
    return get_remote_address(request) or "unknown"


def rate_limit_key(scope: str, kind: str, value: str) -> str:
    """Compose a rate limit key. Emails are lowercased before keying."""
    return f"{scope}:{kind}:{value.strip().lower()}"


def rate_limited_handler(_request: Request, exc: RateLimitedError) -> Response:
    """Handle rate limit exceeded errors.

    Security: Returns 429 Too Many Requests with standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and Retry-After header.
    """
    retry_after = max(1, int(exc.retry_after))
    return JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message)
        ).model_dump(exclude_none=True),
        headers={"Retry-After": str(retry_after)},
    )
