"""LuxRide Bookings API application.

create_app() wires the v1 router, the error envelope handlers and the
response header middleware. uvicorn serves the module-level ``app``.
"""

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.errors import APIError, RateLimitedError
from app.core.rate_limiting import rate_limited_handler
from app.core.responses import ErrorDetail, ErrorResponse

logger = structlog.get_logger()

_RESPONSE_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}

_CORS_HEADERS = ["Content-Type", "Accept", "Authorization", "Idempotency-Key"]


class ResponseHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp fixed headers on every response.

    API responses are also marked no-store: booking bodies can carry a
    manage token or a guest session credential.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        response.headers.update(_RESPONSE_HEADERS)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response


def _envelope(
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, details=details)
        ).model_dump(),
    )


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError with its own status and code."""
    return _envelope(exc.status_code, exc.code, exc.message, exc.details)


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request body/query validation failures as 400 VALIDATION_ERROR."""
    details = [
        {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
        for e in exc.errors()
    ]
    return _envelope(400, "VALIDATION_ERROR", "Request validation failed", details)


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unhandled exception and return a bare 500."""
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))
    return _envelope(500, "INTERNAL_ERROR", "An unexpected error occurred")


def create_app() -> FastAPI:
    """Build the application.

    Returns:
        FastAPI instance with routes, middleware and error handlers.
    """
    app = FastAPI(
        title="LuxRide Bookings API",
        version="1.0.0",
        description="Ride booking API with guest access and booking guards",
    )

    # Added last so it runs first and answers CORS preflights
    app.add_middleware(ResponseHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=_CORS_HEADERS,
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitedError, rate_limited_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/health")
    def health_check() -> dict:
        return {"status": "healthy"}

    return app


app = create_app()
