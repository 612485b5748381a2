"""Authentication endpoints for registered riders.

Endpoints:
- POST /auth/register: create a rider account, link past guest bookings,
  email a verification link
- GET /auth/verify-email: redeem a verification link
- POST /auth/resend-verification: email a fresh verification link
- POST /auth/login: email + password for a session and refresh credential
- POST /auth/refresh: trade a refresh credential for a new session

Security considerations:
- login: constant-time comparison via DUMMY_HASH prevents user enumeration
- login: refused with EMAIL_NOT_VERIFIED until the email is confirmed
- register: bcrypt cost 12, email uniqueness
- resend-verification: same answer whether or not the account exists
- all are rate-limited by IP; login and resend also by email
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy.exc import IntegrityError

from app.api.deps import ClientIp, DbSession, Limiter
from app.core.auth import (
    check_secret,
    hash_password,
    issue_refresh_token,
    issue_session_token,
    verify_refresh_token,
)
from app.core.config import settings
from app.core.email import send_verification_email
from app.core.errors import APIError, ConflictError, UnauthorizedError, ValidationError
from app.core.rate_limiting import rate_limit_key
from app.core.responses import DataResponse
from app.models.user import User
from app.repositories.booking_repository import BookingRepository
from app.repositories.user_repository import UserRepository
from app.services.email_verification import EmailVerificationService

# bcrypt only looks at the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72

_INVALID_VERIFICATION_MSG = "Invalid or expired verification link"
_RESEND_MSG = "If an unverified account exists, a verification link has been sent"

router = APIRouter()


def _check_password_bytes(value: str) -> str:
    if len(value.encode()) > _BCRYPT_MAX_BYTES:
        msg = f"Password must be at most {_BCRYPT_MAX_BYTES} bytes"
        raise ValueError(msg)
    return value


# ===================================================================
# Request / response models
# ===================================================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    name: str = Field(min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=32)

    _password_bytes = field_validator("password")(_check_password_bytes)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=72)


class ResendVerificationRequest(BaseModel):
    """Request body for POST /auth/resend-verification."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""

    model_config = ConfigDict(extra="forbid")

    refresh_token: str = Field(min_length=1, max_length=2048)


class AccountResponse(BaseModel):
    """Public view of an account."""

    id: int
    email: str
    name: str
    phone: str | None = None
    role: str
    email_verified: bool


class RegisterResponse(AccountResponse):
    """Response for POST /auth/register."""

    linked_bookings: int


class LoginResponse(BaseModel):
    """Session credential for a registered user."""

    session_token: str
    refresh_token: str
    expires_in: int
    user: AccountResponse


def _account(user: User) -> AccountResponse:
    return AccountResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        phone=user.phone,
        role=user.role,
        email_verified=user.email_verified is not None,
    )


def _issue_session(user: User, refresh_token: str) -> LoginResponse:
    ttl_minutes = settings.access_token_ttl_minutes
    token = issue_session_token(
        email=user.email,
        role=user.role,
        user_id=user.id,
        ttl=timedelta(minutes=ttl_minutes),
    )
    return LoginResponse(
        session_token=token,
        refresh_token=refresh_token,
        expires_in=ttl_minutes * 60,
        user=_account(user),
    )


# ===================================================================
# POST /auth/register
# ===================================================================


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
) -> DataResponse[RegisterResponse]:
    """Register a rider account.

    Guest bookings already made with this email (and not yet linked) are
    attached to the new account. The account cannot sign in until the
    emailed verification link is opened.

    Rate limit: login_rate_limit per window, per IP.
    """
    await limiter.enforce(
        [rate_limit_key("register", "ip", ip)],
        settings.login_rate_limit,
        settings.login_rate_window_seconds,
    )

    if await UserRepository.email_registered(db, body.email):
        raise ConflictError(
            code="EMAIL_ALREADY_EXISTS", message="Email already registered"
        )

    try:
        user = await UserRepository.create(
            db,
            email=body.email,
            name=body.name.strip(),
            phone=body.phone,
            password_hash=hash_password(body.password),
        )
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            code="EMAIL_ALREADY_EXISTS", message="Email already registered"
        ) from exc

    linked = await BookingRepository.link_to_user(db, email=user.email, user_id=user.id)
    token = await EmailVerificationService(db).issue(user)
    await db.commit()

    background_tasks.add_task(
        send_verification_email,
        to_email=user.email,
        name=user.name,
        token=token,
    )

    account = _account(user)
    return DataResponse(
        data=RegisterResponse(**account.model_dump(), linked_bookings=linked)
    )


# ===================================================================
# GET /auth/verify-email
# ===================================================================


@router.get("/verify-email")
async def verify_email(
    token: Annotated[str, Query(min_length=1, max_length=256)],
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
) -> DataResponse[AccountResponse]:
    """Confirm an account email from the emailed link.

    Each link works once. Unknown, used and expired links get the same
    400 response.

    Rate limit: guest_verify_rate_limit per window, per IP.
    """
    await limiter.enforce(
        [rate_limit_key("verify_email", "ip", ip)],
        settings.guest_verify_rate_limit,
        settings.guest_verify_rate_window_seconds,
    )

    user = await EmailVerificationService(db).verify(token)
    await db.commit()
    if user is None:
        raise ValidationError(_INVALID_VERIFICATION_MSG)
    return DataResponse(data=_account(user))


# ===================================================================
# POST /auth/resend-verification
# ===================================================================


@router.post("/resend-verification")
async def resend_verification(
    body: ResendVerificationRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
) -> DataResponse[dict]:
    """Email a new verification link to an unverified account.

    Always returns the same message so the response does not reveal
    whether the account exists or is already verified.

    Rate limit: guest_access_rate_limit per window, per IP and per email.
    """
    await limiter.enforce(
        [
            rate_limit_key("resend_verification", "ip", ip),
            rate_limit_key("resend_verification", "email", body.email),
        ],
        settings.guest_access_rate_limit,
        settings.guest_access_rate_window_seconds,
    )

    reissued = await EmailVerificationService(db).reissue_for_email(body.email)
    await db.commit()

    if reissued is not None:
        user, token = reissued
        background_tasks.add_task(
            send_verification_email,
            to_email=user.email,
            name=user.name,
            token=token,
        )

    return DataResponse(data={"message": _RESEND_MSG})


# ===================================================================
# POST /auth/login
# ===================================================================


@router.post("/login")
async def login(
    body: LoginRequest,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
) -> DataResponse[LoginResponse]:
    """Verify email + password and issue session and refresh credentials.

    Constant-time comparison prevents user enumeration via response time
    differences. The verification check runs only after the password
    matched, so it reveals nothing to a caller without the password.

    Rate limit: login_rate_limit per window, per IP and per email.
    """
    await limiter.enforce(
        [
            rate_limit_key("login", "ip", ip),
            rate_limit_key("login", "email", body.email),
        ],
        settings.login_rate_limit,
        settings.login_rate_window_seconds,
    )

    user = await UserRepository.get_by_email(db, body.email)
    # Security: always run bcrypt, against DUMMY_HASH when the user is unknown
    matched = check_secret(body.password, user.password_hash if user else None)
    if user is None or not matched:
        raise UnauthorizedError("Invalid email or password")

    if user.email_verified is None:
        raise APIError(
            code="EMAIL_NOT_VERIFIED",
            message=(
                "Please verify your email before signing in. "
                "Check your inbox for the verification link."
            ),
            status_code=403,
        )

    return DataResponse(data=_issue_session(user, issue_refresh_token(user_id=user.id)))


# ===================================================================
# POST /auth/refresh
# ===================================================================


@router.post("/refresh")
async def refresh(
    body: RefreshRequest,
    db: DbSession,
    limiter: Limiter,
    ip: ClientIp,
) -> DataResponse[LoginResponse]:
    """Issue a new session credential from a refresh credential.

    The account is reloaded so the new session carries its current role.
    The refresh credential itself is returned unchanged and stays valid
    until it expires.

    Rate limit: login_rate_limit per window, per IP.
    """
    await limiter.enforce(
        [rate_limit_key("refresh", "ip", ip)],
        settings.login_rate_limit,
        settings.login_rate_window_seconds,
    )

    user_id = verify_refresh_token(body.refresh_token)
    user = await UserRepository.get_by_id(db, user_id)
    if user is None or user.email_verified is None:
        raise UnauthorizedError("Invalid or expired session")

    return DataResponse(data=_issue_session(user, body.refresh_token))
