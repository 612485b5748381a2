"""Repository for GuestAccessCode operations.

Redemption goes through single conditional UPDATE statements so two
concurrent redemptions of the same code or token can never both win.
"""

from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.guest_access_code import GuestAccessCode


class GuestAccessRepository:
    """Stateless repository for guest_access_codes operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        code_hash: str,
        token: str,
        expires_at: datetime,
        ip_created: str | None = None,
    ) -> GuestAccessCode:
        """Store a newly issued code/token pair.

        Args:
            db: Async database session.
            email: Lowercased recipient email.
            code_hash: bcrypt hash of the six-digit code.
            token: Plain magic link token.
            expires_at: Shared expiry for code and token.
            ip_created: Requesting client IP.

        Returns:
            Created GuestAccessCode.
        """
        record = GuestAccessCode(
            email=email,
            code_hash=code_hash,
            token=token,
            expires_at=expires_at,
            attempts=0,
            ip_created=ip_created,
        )
        db.add(record)
        await db.flush()
        await db.refresh(record)
        return record

    @staticmethod
    async def get_latest_for_email(
        db: AsyncSession, email: str
    ) -> GuestAccessCode | None:
        """Fetch the most recently issued record for an email.

        Args:
            db: Async database session.
            email: Email address, matched case-insensitively.

        Returns:
            Newest GuestAccessCode, or None if none was ever issued.
        """
        stmt = (
            select(GuestAccessCode)
            .where(func.lower(GuestAccessCode.email) == email.strip().lower())
            .order_by(GuestAccessCode.created_at.desc(), GuestAccessCode.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def increment_attempts(db: AsyncSession, code_id: int) -> int:
        """Atomically count one failed verification.

        Returns:
            The new attempts value.
        """
        stmt = (
            update(GuestAccessCode)
            .where(GuestAccessCode.id == code_id)
            .values(attempts=GuestAccessCode.attempts + 1)
            .returning(GuestAccessCode.attempts)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def mark_used(
        db: AsyncSession,
        code_id: int,
        *,
        now: datetime,
        max_attempts: int,
    ) -> bool:
        """Set used_at if the record is still usable.

        Args:
            db: Async database session.
            code_id: Record primary key.
            now: Redemption time.
            max_attempts: Attempt cap; records at or above it are locked out.

        Returns:
            True if this call redeemed the record, False if it was already
            used, expired or locked out.
        """
        stmt = (
            update(GuestAccessCode)
            .where(
                GuestAccessCode.id == code_id,
                GuestAccessCode.used_at.is_(None),
                GuestAccessCode.expires_at > now,
                GuestAccessCode.attempts < max_attempts,
            )
            .values(used_at=now)
            .returning(GuestAccessCode.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def consume_token(
        db: AsyncSession,
        token: str,
        *,
        now: datetime,
        max_attempts: int,
    ) -> str | None:
        """Redeem a magic link token in one conditional update.

        Args:
            db: Async database session.
            token: Plain magic link token.
            now: Redemption time.
            max_attempts: Attempt cap shared with the numeric code.

        Returns:
            The record's email on success, None if the token is unknown or
            no longer usable.
        """
        stmt = (
            update(GuestAccessCode)
            .where(
                GuestAccessCode.token == token,
                GuestAccessCode.used_at.is_(None),
                GuestAccessCode.expires_at > now,
                GuestAccessCode.attempts < max_attempts,
            )
            .values(used_at=now)
            .returning(GuestAccessCode.email)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_stale(
        db: AsyncSession,
        *,
        used_before: datetime,
        expired_before: datetime,
    ) -> int:
        """Delete records used or expired before the given cutoffs.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(GuestAccessCode).where(
            or_(
                GuestAccessCode.used_at < used_before,
                GuestAccessCode.expires_at < expired_before,
            )
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
