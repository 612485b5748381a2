"""Tests for booking endpoints.

End-to-end through the HTTP layer: create with Idempotency-Key, manage
token access, guest session access, reschedule cap and cancellation.
"""

from datetime import UTC, datetime, timedelta

import pytest

from app.core.config import settings
from tests.conftest import (
    GUEST_EMAIL,
    RIDER_EMAIL,
    TEST_PASSWORD,
    bearer,
    create_test_session_token,
)

_BASE = "/api/v1/bookings"


def _iso(delta: timedelta) -> str:
    return (datetime.now(UTC) + delta).isoformat()


def _body(**overrides) -> dict:
    body = {
        "rider_name": "Guest Rider",
        "rider_email": GUEST_EMAIL,
        "pickup": "1 Airport Way",
        "dropoff": "2 Hotel Row",
        "scheduled_at": _iso(timedelta(days=3)),
        "passengers": 2,
        "luggages": 1,
        "ride_type": "per_ride",
    }
    body.update(overrides)
    return body


async def _create(client, **overrides) -> dict:
    response = await client.post(_BASE, json=_body(**overrides))
    assert response.status_code == 201
    return response.json()["data"]


class TestCreate:
    """Tests for POST /bookings."""

    @pytest.mark.asyncio
    async def test_create_returns_token(self, client):
        """Creation returns id, manage_token, pending status and time."""
        data = await _create(client)
        assert data["status"] == "pending"
        assert data["manage_token"]
        assert isinstance(data["id"], int)

    @pytest.mark.asyncio
    async def test_idempotency_key_replays(self, client):
        """The same Idempotency-Key returns the same booking."""
        headers = {"Idempotency-Key": "order-123"}
        body = _body()
        first = await client.post(_BASE, json=body, headers=headers)
        second = await client.post(_BASE, json=body, headers=headers)
        assert first.status_code == second.status_code == 201
        assert first.json()["data"]["id"] == second.json()["data"]["id"]
        assert (
            first.json()["data"]["manage_token"]
            == second.json()["data"]["manage_token"]
        )

    @pytest.mark.asyncio
    async def test_reused_key_with_other_payload_is_refused(self, client):
        """Same key and email but a different body is 422, with no booking data."""
        headers = {"Idempotency-Key": "order-123"}
        first = await client.post(_BASE, json=_body(), headers=headers)
        assert first.status_code == 201

        second = await client.post(
            _BASE, json=_body(pickup="9 Elsewhere St"), headers=headers
        )
        assert second.status_code == 422
        assert second.json()["error"]["code"] == "IDEMPOTENCY_KEY_REUSED"
        assert first.json()["data"]["manage_token"] not in second.text

    @pytest.mark.asyncio
    async def test_key_from_other_email_does_not_replay(self, client):
        """Another rider reusing a key gets a new booking, never the first one."""
        headers = {"Idempotency-Key": "order-123"}
        victim = await client.post(_BASE, json=_body(), headers=headers)
        other = await client.post(
            _BASE, json=_body(rider_email="mallory@example.com"), headers=headers
        )
        assert victim.status_code == other.status_code == 201
        assert other.json()["data"]["id"] != victim.json()["data"]["id"]
        assert (
            other.json()["data"]["manage_token"]
            != victim.json()["data"]["manage_token"]
        )

    @pytest.mark.asyncio
    async def test_blank_idempotency_key(self, client):
        """A blank Idempotency-Key is a validation error."""
        response = await client.post(
            _BASE, json=_body(), headers={"Idempotency-Key": "   "}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"passengers": 0},
            {"passengers": 9},
            {"luggages": 11},
            {"ride_type": "shuttle"},
            {"scheduled_at": "2020-01-01T10:00:00+00:00"},
            {"scheduled_at": "2030-01-01T10:00:00"},
            {"unexpected": "field"},
        ],
    )
    async def test_invalid_body(self, client, overrides):
        """Out-of-range or malformed fields are 400 VALIDATION_ERROR."""
        response = await client.post(_BASE, json=_body(**overrides))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_create_rate_limited_by_ip(self, client):
        """Creation beyond the per-IP limit is 429 with Retry-After."""
        original_enabled = settings.rate_limit_enabled
        original_limit = settings.booking_create_rate_limit
        settings.rate_limit_enabled = True
        settings.booking_create_rate_limit = 2
        try:
            await _create(client)
            await _create(client)
            response = await client.post(_BASE, json=_body())
        finally:
            settings.rate_limit_enabled = original_enabled
            settings.booking_create_rate_limit = original_limit
        assert response.status_code == 429
        assert "Retry-After" in response.headers


class TestTokenAccess:
    """Tests for manage_token access."""

    @pytest.mark.asyncio
    async def test_get_with_token(self, client):
        """The token reads the booking and is echoed back."""
        created = await _create(client)
        response = await client.get(
            f"{_BASE}/{created['id']}",
            params={"manage_token": created["manage_token"]},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["rider_email"] == GUEST_EMAIL
        assert data["manage_token"] == created["manage_token"]

    @pytest.mark.asyncio
    async def test_wrong_token(self, client):
        """A wrong token is 404."""
        created = await _create(client)
        response = await client.get(
            f"{_BASE}/{created['id']}", params={"manage_token": "wrong"}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_no_credentials(self, client):
        """No token and no session is 401."""
        created = await _create(client)
        response = await client.get(f"{_BASE}/{created['id']}")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_with_invalid_session(self, client):
        """A valid token still works alongside a broken session header."""
        created = await _create(client)
        response = await client.get(
            f"{_BASE}/{created['id']}",
            params={"manage_token": created["manage_token"]},
            headers=bearer("garbage"),
        )
        assert response.status_code == 200


class TestSessionAccess:
    """Tests for guest and rider session access."""

    @pytest.mark.asyncio
    async def test_guest_session_reads_without_token_field(self, client):
        """Session responses omit manage_token."""
        created = await _create(client)
        token = create_test_session_token(GUEST_EMAIL.upper())
        response = await client.get(f"{_BASE}/{created['id']}", headers=bearer(token))
        assert response.status_code == 200
        assert "manage_token" not in response.json()["data"]

    @pytest.mark.asyncio
    async def test_session_via_query_parameter(self, client):
        """session_token in the query string is accepted."""
        created = await _create(client)
        response = await client.get(
            f"{_BASE}/{created['id']}",
            params={"session_token": create_test_session_token()},
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_foreign_session(self, client):
        """Another email's session gets 404."""
        created = await _create(client)
        token = create_test_session_token("stranger@example.com")
        response = await client.get(f"{_BASE}/{created['id']}", headers=bearer(token))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_expired_session(self, client):
        """An expired session without a token is 401."""
        created = await _create(client)
        token = create_test_session_token(expires_delta=timedelta(seconds=-1))
        response = await client.get(f"{_BASE}/{created['id']}", headers=bearer(token))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_list_requires_session(self, client):
        """GET /bookings without a session is 401."""
        response = await client.get(_BASE)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_list_own_bookings(self, client):
        """Listing shows the session's bookings with pagination meta."""
        await _create(client)
        await _create(client)
        await _create(client, rider_email="other@example.com")

        response = await client.get(
            _BASE,
            params={"limit": 500},
            headers=bearer(create_test_session_token()),
        )
        assert response.status_code == 200
        body = response.json()
        assert len(body["data"]) == 2
        assert body["meta"] == {"limit": 100, "offset": 0, "count": 2}
        assert all("manage_token" not in item for item in body["data"])

    @pytest.mark.asyncio
    async def test_rider_creates_linked_booking(self, client, rider_user):
        """POST /bookings/me links the booking to the account."""
        login = await client.post(
            "/api/v1/auth/login",
            json={"email": RIDER_EMAIL, "password": TEST_PASSWORD},
        )
        session = login.json()["data"]["session_token"]
        response = await client.post(
            f"{_BASE}/me",
            json={
                "pickup": "A",
                "dropoff": "B",
                "scheduled_at": _iso(timedelta(days=2)),
            },
            headers=bearer(session),
        )
        assert response.status_code == 201

        listed = await client.get(_BASE, headers=bearer(session))
        item = listed.json()["data"][0]
        assert item["user_id"] == rider_user.id
        assert item["rider_email"] == RIDER_EMAIL

    @pytest.mark.asyncio
    async def test_guest_cannot_use_me_endpoint(self, client):
        """Guest sessions cannot create account bookings."""
        response = await client.post(
            f"{_BASE}/me",
            json={"pickup": "A", "dropoff": "B", "scheduled_at": _iso(timedelta(days=2))},
            headers=bearer(create_test_session_token()),
        )
        assert response.status_code == 401


class TestPatchAndCancel:
    """Tests for PATCH and DELETE /bookings/{id}."""

    @pytest.mark.asyncio
    async def test_reschedule_cap(self, client):
        """Two reschedules succeed; the third is 422 RESCHEDULE_LIMIT_REACHED."""
        created = await _create(client)
        url = f"{_BASE}/{created['id']}"
        params = {"manage_token": created["manage_token"]}

        for days in (4, 5):
            response = await client.patch(
                url, params=params, json={"scheduled_at": _iso(timedelta(days=days))}
            )
            assert response.status_code == 200
        assert response.json()["data"]["reschedule_count"] == 2

        response = await client.patch(
            url, params=params, json={"scheduled_at": _iso(timedelta(days=6))}
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "RESCHEDULE_LIMIT_REACHED"

    @pytest.mark.asyncio
    async def test_patch_other_fields_after_cap(self, client):
        """Non-time fields stay editable after the cap is reached."""
        created = await _create(client)
        url = f"{_BASE}/{created['id']}"
        params = {"manage_token": created["manage_token"]}
        for days in (4, 5):
            await client.patch(
                url, params=params, json={"scheduled_at": _iso(timedelta(days=days))}
            )

        response = await client.patch(url, params=params, json={"passengers": 4})
        assert response.status_code == 200
        assert response.json()["data"]["passengers"] == 4

    @pytest.mark.asyncio
    async def test_patch_cannot_change_email(self, client):
        """rider_email is not patchable."""
        created = await _create(client)
        response = await client.patch(
            f"{_BASE}/{created['id']}",
            params={"manage_token": created["manage_token"]},
            json={"rider_email": "thief@example.com"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_cancel_then_cancel_again(self, client):
        """Cancel is 204; a second cancel is 404."""
        created = await _create(client)
        url = f"{_BASE}/{created['id']}"
        params = {"manage_token": created["manage_token"]}

        response = await client.delete(url, params=params)
        assert response.status_code == 204

        fetched = await client.get(url, params=params)
        assert fetched.json()["data"]["status"] == "canceled"

        response = await client.delete(url, params=params)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_inside_cutoff(self, client):
        """Cancelling 23 hours ahead is 422 CANCELLATION_CUTOFF_PASSED."""
        created = await _create(client, scheduled_at=_iso(timedelta(hours=23)))
        response = await client.delete(
            f"{_BASE}/{created['id']}",
            params={"manage_token": created["manage_token"]},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "CANCELLATION_CUTOFF_PASSED"

    @pytest.mark.asyncio
    async def test_guest_session_cancels(self, client):
        """The owning guest session can cancel without the token."""
        created = await _create(client, scheduled_at=_iso(timedelta(hours=25)))
        response = await client.delete(
            f"{_BASE}/{created['id']}", headers=bearer(create_test_session_token())
        )
        assert response.status_code == 204
