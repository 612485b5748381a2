"""Guest access endpoints: one-time code and magic link sign-in.

Endpoints:
- POST /guest/access/request: email a code and a magic link
- POST /guest/access/verify: redeem the code for a guest session
- GET /guest/access/magic: redeem the magic link token for a guest session

Security considerations:
- Codes are bcrypt-hashed at rest; tokens are single-use and time-boxed
- Request is rate-limited by IP and by email; verify and magic by IP
- A wrong code is committed as a failed attempt before the 401 is raised
- Registered emails are refused (409 REGISTERED_ACCOUNT)
"""

from fastapi import APIRouter, BackgroundTasks, Query
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.api.deps import ClientIp, DbSession, Limiter
from app.core.config import settings
from app.core.email import send_guest_access_email
from app.core.errors import UnauthorizedError
from app.core.rate_limiting import rate_limit_key
from app.core.responses import DataResponse
from app.services.guest_access_service import GuestAccessService

router = APIRouter()

# Generic 401 message. Does not reveal whether a code was ever issued.
_INVALID_CODE_MSG = "Invalid or expired code"
_INVALID_LINK_MSG = "Invalid or expired link"


# ===================================================================
# Request / response models
# ===================================================================


class GuestAccessRequest(BaseModel):
    """Request body for POST /guest/access/request."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class GuestVerifyRequest(BaseModel):
    """Request body for POST /guest/access/verify."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    code: str = Field(pattern=r"^\d{6}$")


class GuestAccessIssued(BaseModel):
    """Response for POST /guest/access/request."""

    sent: bool
    expires_in: int


class GuestSessionResponse(BaseModel):
    """Guest session credential returned after verification."""

    session_token: str
    expires_in: int


# ===================================================================
# POST /guest/access/request
# ===================================================================


@router.post("/request", status_code=202)
async def request_guest_access(
    body: GuestAccessRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
) -> DataResponse[GuestAccessIssued]:
    """Issue a guest access code and magic link by email.

    Rate limit: guest_access_rate_limit per window, per IP and per email.
    """
    await limiter.enforce(
        [
            rate_limit_key("guest_access", "ip", ip),
            rate_limit_key("guest_access", "email", body.email),
        ],
        settings.guest_access_rate_limit,
        settings.guest_access_rate_window_seconds,
    )

    issued = await GuestAccessService(db).request_access(body.email, ip=ip)
    await db.commit()

    # Delivery runs after the response; failures are logged, not retried
    background_tasks.add_task(
        send_guest_access_email,
        to_email=issued.email,
        code=issued.code,
        token=issued.token,
    )

    return DataResponse(
        data=GuestAccessIssued(
            sent=True, expires_in=settings.guest_code_ttl_minutes * 60
        )
    )


# ===================================================================
# POST /guest/access/verify
# ===================================================================


@router.post("/verify")
async def verify_guest_code(
    body: GuestVerifyRequest,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
) -> DataResponse[GuestSessionResponse]:
    """Exchange a six-digit code for a guest session.

    Rate limit: guest_verify_rate_limit per window, per IP and per email.
    """
    await limiter.enforce(
        [
            rate_limit_key("guest_verify", "ip", ip),
            rate_limit_key("guest_verify", "email", body.email),
        ],
        settings.guest_verify_rate_limit,
        settings.guest_verify_rate_window_seconds,
    )

    service = GuestAccessService(db)
    verified = await service.verify_code(body.email, body.code)
    # Persist the redemption, or the failed attempt, before answering
    await db.commit()
    if not verified:
        raise UnauthorizedError(_INVALID_CODE_MSG)

    session = service.issue_session(body.email)
    return DataResponse(
        data=GuestSessionResponse(
            session_token=session.session_token, expires_in=session.expires_in
        )
    )


# ===================================================================
# GET /guest/access/magic
# ===================================================================


@router.get("/magic")
async def consume_magic_link(
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
    token: str = Query(min_length=1, max_length=128),
) -> DataResponse[GuestSessionResponse]:
    """Exchange a magic link token for a guest session.

    Rate limit: guest_verify_rate_limit per window, per IP.
    """
    await limiter.enforce(
        [rate_limit_key("guest_magic", "ip", ip)],
        settings.guest_verify_rate_limit,
        settings.guest_verify_rate_window_seconds,
    )

    service = GuestAccessService(db)
    email = await service.consume_magic(token)
    if email is None:
        raise UnauthorizedError(_INVALID_LINK_MSG)
    await db.commit()

    session = service.issue_session(email)
    return DataResponse(
        data=GuestSessionResponse(
            session_token=session.session_token, expires_in=session.expires_in
        )
    )
