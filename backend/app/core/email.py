"""Email sending via Resend API.

Plain-text emails:
- guest access: a six-digit code plus a single-use magic link
- account verification: a single-use link confirming a new address

Delivery runs after the response is sent; failures are logged and never
reach the caller.
"""

import logging
from urllib.parse import quote, urlencode

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"


def _frontend_url(path: str, token: str) -> str:
    params = urlencode({"token": token}, quote_via=quote)
    return f"{settings.frontend_url.rstrip('/')}{path}?{params}"


def build_magic_link_url(token: str) -> str:
    """Build the frontend URL that redeems a magic link token."""
    return _frontend_url("/guest/access/magic", token)


def build_verification_url(token: str) -> str:
    """Build the frontend URL that confirms an account email."""
    return _frontend_url("/verify-email", token)


async def _deliver(*, to_email: str, subject: str, text: str, kind: str) -> None:
    api_key = settings.resend_api_key.get_secret_value()
    if not api_key:
        logger.info("Email delivery disabled; %s email not sent", kind)
        return

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                json={
                    "from": settings.email_from,
                    "to": to_email,
                    "subject": subject,
                    "text": text,
                },
                timeout=settings.email_timeout_seconds,
            )
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        # Never log the body: it carries codes and tokens
        logger.warning("Failed to send %s email: %s", kind, type(exc).__name__)


async def send_guest_access_email(*, to_email: str, code: str, token: str) -> None:
    """Send a guest access code and magic link via Resend.

    Args:
        to_email: Recipient email address.
        code: Plain six-digit access code.
        token: Plain magic link token.
    """
    ttl = settings.guest_code_ttl_minutes
    await _deliver(
        to_email=to_email,
        subject="Your booking access code",
        text=(
            f"Your access code is {code}\n\n"
            "Or open this link to manage your bookings:\n\n"
            f"{build_magic_link_url(token)}\n\n"
            f"The code and link expire in {ttl} minutes. "
            "If you didn't request this, you can safely ignore this email."
        ),
        kind="guest access",
    )


async def send_verification_email(*, to_email: str, name: str, token: str) -> None:
    """Send an account verification link via Resend.

    Args:
        to_email: Address being verified.
        name: Account display name for the greeting.
        token: Plain verification token.
    """
    ttl = settings.email_verification_ttl_hours
    await _deliver(
        to_email=to_email,
        subject="Confirm your email address",
        text=(
            f"Hi {name},\n\n"
            "Open this link to confirm your email and finish creating your "
            f"account:\n\n{build_verification_url(token)}\n\n"
            f"The link expires in {ttl} hours. "
            "If you didn't sign up, you can safely ignore this email."
        ),
        kind="verification",
    )
