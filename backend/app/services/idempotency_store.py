"""Idempotency store for booking creation.

check_or_reserve and record run inside the same transaction as the
booking insert. The reservation row is locked by that transaction, so a
concurrent request with the same key waits and then replays the booking
instead of creating a second one.

Each key also stores a fingerprint of the payload that reserved it. A
later request with the same key but a different payload is refused
rather than handed the earlier booking.
"""

import hashlib
import json
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import PolicyViolationError, ValidationError
from app.repositories.idempotency_repository import IdempotencyRepository

MAX_KEY_LENGTH = 255


def hash_idempotency_key(key: str) -> str:
    """SHA-256 hex digest of a client idempotency key."""
    return hashlib.sha256(key.encode()).hexdigest()


def _canonical(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat()
    return value


def fingerprint_request(fields: dict[str, Any]) -> str:
    """SHA-256 hex digest of normalized create fields.

    Keys are sorted and datetimes converted to UTC, so equal payloads
    hash equally regardless of field order or offset.
    """
    canonical = {name: _canonical(value) for name, value in fields.items()}
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()


class IdempotencyStore:
    """Maps hashed Idempotency-Key values to created booking ids.

    Args:
        db: Async database session owning the create transaction.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @staticmethod
    def validate_key(key: str) -> str:
        """Reject empty or oversized keys.

        Raises:
            ValidationError: If the key is blank or longer than 255 chars.
        """
        key = key.strip()
        if not key or len(key) > MAX_KEY_LENGTH:
            raise ValidationError(
                message=f"Idempotency-Key must be 1-{MAX_KEY_LENGTH} characters",
                details=[{"field": "Idempotency-Key", "message": "invalid length"}],
            )
        return key

    async def check_or_reserve(
        self,
        key: str,
        *,
        request_hash: str,
        now: datetime | None = None,
    ) -> int | None:
        """Return the booking already created for key, or reserve key.

        Args:
            key: Scoped idempotency key (unhashed).
            request_hash: fingerprint_request() of the create payload.
            now: Override for the current time.

        Returns:
            Existing booking id, or None if this transaction now holds the
            reservation and should create the booking.

        Raises:
            PolicyViolationError: IDEMPOTENCY_KEY_REUSED when the key was
                first used with a different payload.
        """
        now = now or datetime.now(UTC)
        key_hash = hash_idempotency_key(key)
        expires_at = now + timedelta(hours=settings.idempotency_ttl_hours)
        reserved = await IdempotencyRepository.reserve(
            self._db,
            key_hash=key_hash,
            request_hash=request_hash,
            expires_at=expires_at,
            now=now,
        )
        if reserved:
            return None

        record = await IdempotencyRepository.get_record(self._db, key_hash=key_hash)
        if record is None:
            return None
        booking_id, stored_hash = record
        if stored_hash != request_hash:
            raise PolicyViolationError(
                code="IDEMPOTENCY_KEY_REUSED",
                message="Idempotency-Key was already used with a different request",
            )
        return booking_id

    async def record(self, key: str, booking_id: int) -> None:
        """Attach the created booking to the reserved key."""
        await IdempotencyRepository.record(
            self._db, key_hash=hash_idempotency_key(key), booking_id=booking_id
        )
