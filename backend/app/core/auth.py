"""Session credentials and secret hashing helpers.

Pipeline:
- SessionIdentity: who the caller is (guest email or registered user)
- issue_session_token / verify_session_token: stateless signed JWT
- issue_refresh_token / verify_refresh_token: long-lived JWT that only
  /auth/refresh accepts; never valid as a session credential
- hash_password / hash_guest_code / check_secret: bcrypt hashing
- DUMMY_HASH: Timing-safe constant for user enumeration defense
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import bcrypt
import jwt

from app.core.config import settings
from app.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)

ROLE_GUEST = "guest"
ROLE_RIDER = "rider"
ROLE_ADMIN = "admin"

# Refresh credentials carry this type claim and no role
_REFRESH_TOKEN_TYPE = "refresh"

_GUEST_SCOPE = "guest.bookings:read guest.bookings:write"
_RIDER_SCOPE = "rider.bookings:read rider.bookings:write"
_ADMIN_SCOPE = "admin.bookings:read admin.bookings:write"

_SCOPES = {
    ROLE_GUEST: _GUEST_SCOPE,
    ROLE_RIDER: _RIDER_SCOPE,
    ROLE_ADMIN: _ADMIN_SCOPE,
}

# bcrypt cost factor for account passwords
_BCRYPT_ROUNDS = 12

# Guest codes live for minutes and are capped at a handful of attempts,
# so a lower cost keeps verification fast.
_CODE_BCRYPT_ROUNDS = 10

# Pre-computed bcrypt hash for timing-safe comparison on user-not-found.
# Security: prevents user enumeration via response time differences.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"

# Generic 401 message. Never say WHY the credential was rejected.
_INVALID_SESSION_MSG = "Invalid or expired session"


@dataclass(frozen=True)
class SessionIdentity:
    """Caller identity carried by a verified session credential.

    Never persisted; rebuilt from the signed token on every request.

    Attributes:
        email: Lowercased email the session is scoped to.
        role: "guest", "rider" or "admin".
        expires_at: Moment the credential stops being valid.
        user_id: Account id for registered users, None for guests.
    """

    email: str
    role: str
    expires_at: datetime
    user_id: int | None = None

    @property
    def is_admin(self) -> bool:
        """True when the session carries the admin role."""
        return self.role == ROLE_ADMIN

    @property
    def is_guest(self) -> bool:
        """True for email-scoped guest sessions."""
        return self.role == ROLE_GUEST


def issue_session_token(
    *,
    email: str,
    role: str,
    ttl: timedelta,
    user_id: int | None = None,
    secret: str | None = None,
) -> str:
    """Create a signed session credential.

    Args:
        email: Email the session is scoped to.
        role: Session role (guest, rider, admin).
        ttl: Time until expiration.
        user_id: Account id for registered users.
        secret: HMAC signing secret. Defaults to settings.auth_secret.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id) if user_id is not None else email.lower(),
        "email": email.lower(),
        "role": role,
        "scope": _SCOPES.get(role, ""),
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "iat": now,
        "exp": now + ttl,
    }
    if user_id is not None:
        payload["uid"] = user_id
    signing_secret = secret or settings.auth_secret.get_secret_value()
    return jwt.encode(payload, signing_secret, algorithm="HS256")


def issue_guest_session(email: str) -> str:
    """Create a guest session credential scoped to one email."""
    return issue_session_token(
        email=email,
        role=ROLE_GUEST,
        ttl=timedelta(minutes=settings.guest_session_ttl_minutes),
    )


def verify_session_token(token: str, *, secret: str | None = None) -> SessionIdentity:
    """Verify a session credential by signature and expiry alone.

    Args:
        token: Encoded JWT string.
        secret: HMAC signing secret. Defaults to settings.auth_secret.

    Returns:
        SessionIdentity decoded from the token claims.

    Raises:
        UnauthorizedError: For any signature, claim or expiry failure.
    """
    signing_secret = secret or settings.auth_secret.get_secret_value()
    try:
        payload = jwt.decode(
            token,
            signing_secret,
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
            options={"require": ["exp", "iat", "sub"]},
        )
        email = str(payload["email"]).lower()
        role = str(payload["role"])
        expires_at = datetime.fromtimestamp(payload["exp"], tz=UTC)
        user_id = payload.get("uid")
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
        raise UnauthorizedError(_INVALID_SESSION_MSG) from exc

    if role not in _SCOPES or not email:
        raise UnauthorizedError(_INVALID_SESSION_MSG)
    if role != ROLE_GUEST and not isinstance(user_id, int):
        raise UnauthorizedError(_INVALID_SESSION_MSG)

    return SessionIdentity(
        email=email,
        role=role,
        expires_at=expires_at,
        user_id=user_id if role != ROLE_GUEST else None,
    )


def issue_refresh_token(
    *,
    user_id: int,
    ttl: timedelta | None = None,
    secret: str | None = None,
) -> str:
    """Create a refresh credential for an account.

    Args:
        user_id: Account id.
        ttl: Time until expiration. Defaults to settings.refresh_token_ttl_days.
        secret: HMAC signing secret. Defaults to settings.auth_secret.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "uid": user_id,
        "typ": _REFRESH_TOKEN_TYPE,
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "iat": now,
        "exp": now + (ttl or timedelta(days=settings.refresh_token_ttl_days)),
    }
    signing_secret = secret or settings.auth_secret.get_secret_value()
    return jwt.encode(payload, signing_secret, algorithm="HS256")


def verify_refresh_token(token: str, *, secret: str | None = None) -> int:
    """Verify a refresh credential.

    Args:
        token: Encoded JWT string.
        secret: HMAC signing secret. Defaults to settings.auth_secret.

    Returns:
        The account id the credential was issued for.

    Raises:
        UnauthorizedError: Bad signature, expired, or not a refresh credential.
    """
    signing_secret = secret or settings.auth_secret.get_secret_value()
    try:
        payload = jwt.decode(
            token,
            signing_secret,
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError(_INVALID_SESSION_MSG) from exc

    user_id = payload.get("uid")
    if payload.get("typ") != _REFRESH_TOKEN_TYPE or not isinstance(user_id, int):
        raise UnauthorizedError(_INVALID_SESSION_MSG)
    return user_id


def hash_password(password: str) -> str:
    """Hash an account password with bcrypt (cost 12)."""
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    ).decode()


def hash_guest_code(code: str) -> str:
    """Hash a numeric guest code with bcrypt before storage."""
    return bcrypt.hashpw(
        code.encode(), bcrypt.gensalt(rounds=_CODE_BCRYPT_ROUNDS)
    ).decode()


def check_secret(plain: str, hashed: str | None) -> bool:
    """Compare a plain secret against a stored bcrypt hash.

    Always performs a bcrypt comparison, against DUMMY_HASH when no hash
    is stored, so response time does not reveal whether one exists.

    Args:
        plain: Candidate password or code.
        hashed: Stored bcrypt hash, or None.

    Returns:
        True on match, False otherwise (including malformed hashes).
    """
    stored = hashed.encode() if hashed else DUMMY_HASH
    try:
        matched = bcrypt.checkpw(plain.encode(), stored)
    except ValueError:
        # Over-long input (bcrypt caps at 72 bytes) or a malformed stored hash
        logger.warning("bcrypt comparison rejected its input")
        return False
    return matched and bool(hashed)
