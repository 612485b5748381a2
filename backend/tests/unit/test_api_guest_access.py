"""Tests for guest access endpoints.

Email delivery is patched; the code and token are read from the
patched sender's call arguments.
"""

from collections.abc import Iterator
from unittest.mock import AsyncMock, patch

import pytest

from app.core.auth import verify_session_token
from app.core.config import settings
from tests.conftest import GUEST_EMAIL, RIDER_EMAIL

_BASE = "/api/v1/guest/access"


@pytest.fixture
def sent_email() -> Iterator[AsyncMock]:
    """Patch the email sender and expose the mock."""
    with patch(
        "app.api.v1.guest_access.send_guest_access_email", new_callable=AsyncMock
    ) as mock:
        yield mock


async def _request_access(client, sent_email, email=GUEST_EMAIL) -> tuple[str, str]:
    response = await client.post(f"{_BASE}/request", json={"email": email})
    assert response.status_code == 202
    kwargs = sent_email.await_args.kwargs
    return kwargs["code"], kwargs["token"]


class TestRequest:
    """Tests for POST /guest/access/request."""

    @pytest.mark.asyncio
    async def test_request_sends_email(self, client, sent_email):
        """A request returns 202 and hands code and token to the sender."""
        response = await client.post(
            f"{_BASE}/request", json={"email": "Guest@Example.com"}
        )
        assert response.status_code == 202
        assert response.json()["data"] == {"sent": True, "expires_in": 15 * 60}

        kwargs = sent_email.await_args.kwargs
        assert kwargs["to_email"] == GUEST_EMAIL
        assert len(kwargs["code"]) == 6
        assert kwargs["token"]

    @pytest.mark.asyncio
    async def test_response_never_contains_code(self, client, sent_email):
        """The code only travels by email."""
        response = await client.post(f"{_BASE}/request", json={"email": GUEST_EMAIL})
        code = sent_email.await_args.kwargs["code"]
        assert code not in response.text

    @pytest.mark.asyncio
    async def test_invalid_email(self, client, sent_email):
        """A malformed email is a 400 validation error."""
        response = await client.post(f"{_BASE}/request", json={"email": "nope"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        sent_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_registered_email(self, client, sent_email, rider_user):
        """Registered emails get 409 REGISTERED_ACCOUNT."""
        response = await client.post(f"{_BASE}/request", json={"email": RIDER_EMAIL})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "REGISTERED_ACCOUNT"
        sent_email.assert_not_awaited()


class TestVerify:
    """Tests for POST /guest/access/verify."""

    @pytest.mark.asyncio
    async def test_verify_issues_guest_session(self, client, sent_email):
        """A correct code returns a 30 minute guest session for the email."""
        code, _ = await _request_access(client, sent_email)
        response = await client.post(
            f"{_BASE}/verify", json={"email": GUEST_EMAIL, "code": code}
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["expires_in"] == 1800
        identity = verify_session_token(data["session_token"])
        assert identity.email == GUEST_EMAIL
        assert identity.is_guest

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, client, sent_email):
        """The second verify with the same code is 401."""
        code, _ = await _request_access(client, sent_email)
        body = {"email": GUEST_EMAIL, "code": code}
        assert (await client.post(f"{_BASE}/verify", json=body)).status_code == 200
        response = await client.post(f"{_BASE}/verify", json=body)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_failed_attempts_persist(self, client, sent_email):
        """Five wrong codes lock the code even though each request failed."""
        code, _ = await _request_access(client, sent_email)
        wrong = "100000" if code != "100000" else "100001"

        for _ in range(5):
            response = await client.post(
                f"{_BASE}/verify", json={"email": GUEST_EMAIL, "code": wrong}
            )
            assert response.status_code == 401

        response = await client.post(
            f"{_BASE}/verify", json={"email": GUEST_EMAIL, "code": code}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_code_format_enforced(self, client):
        """Codes must be exactly six digits."""
        response = await client.post(
            f"{_BASE}/verify", json={"email": GUEST_EMAIL, "code": "12ab"}
        )
        assert response.status_code == 400


class TestMagicLink:
    """Tests for GET /guest/access/magic."""

    @pytest.mark.asyncio
    async def test_magic_link_issues_session(self, client, sent_email):
        """A fresh token returns a guest session."""
        _, token = await _request_access(client, sent_email)
        response = await client.get(f"{_BASE}/magic", params={"token": token})
        assert response.status_code == 200
        identity = verify_session_token(response.json()["data"]["session_token"])
        assert identity.email == GUEST_EMAIL

    @pytest.mark.asyncio
    async def test_magic_link_single_use(self, client, sent_email):
        """The second use of a token is 401."""
        _, token = await _request_access(client, sent_email)
        await client.get(f"{_BASE}/magic", params={"token": token})
        response = await client.get(f"{_BASE}/magic", params={"token": token})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_magic_link_burns_code(self, client, sent_email):
        """After the link is used the code no longer verifies."""
        code, token = await _request_access(client, sent_email)
        await client.get(f"{_BASE}/magic", params={"token": token})
        response = await client.post(
            f"{_BASE}/verify", json={"email": GUEST_EMAIL, "code": code}
        )
        assert response.status_code == 401


class TestRateLimits:
    """Tests for guest access rate limiting."""

    @pytest.fixture(autouse=True)
    def _enable(self):
        original = settings.rate_limit_enabled
        settings.rate_limit_enabled = True
        yield
        settings.rate_limit_enabled = original

    @pytest.mark.asyncio
    async def test_request_limited_per_email(self, client, sent_email):
        """The sixth request for one email in the window is 429."""
        for _ in range(settings.guest_access_rate_limit):
            response = await client.post(
                f"{_BASE}/request", json={"email": GUEST_EMAIL}
            )
            assert response.status_code == 202

        response = await client.post(f"{_BASE}/request", json={"email": GUEST_EMAIL})
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"
        assert int(response.headers["Retry-After"]) >= 1
