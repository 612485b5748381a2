"""Repository for email verification tokens.

Tokens are looked up by SHA-256 hash. Consuming one is a single
conditional UPDATE, so a link opened twice at once verifies only once.
"""

from datetime import datetime

from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.email_verification_token import EmailVerificationToken


class EmailVerificationRepository:
    """Stateless repository for EmailVerificationToken operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
    ) -> EmailVerificationToken:
        """Store a new verification token.

        Args:
            db: Async database session.
            user_id: Account to verify.
            token_hash: SHA-256 hash of the plain token.
            expires_at: Link expiry.

        Returns:
            Created EmailVerificationToken.
        """
        record = EmailVerificationToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
        )
        db.add(record)
        await db.flush()
        await db.refresh(record)
        return record

    @staticmethod
    async def consume(
        db: AsyncSession, *, token_hash: str, now: datetime
    ) -> int | None:
        """Mark an unused, unexpired token used.

        Args:
            db: Async database session.
            token_hash: SHA-256 hash of the presented token.
            now: Redemption time.

        Returns:
            The token's user_id, or None if it is unknown, used or expired.
        """
        stmt = (
            update(EmailVerificationToken)
            .where(
                EmailVerificationToken.token_hash == token_hash,
                EmailVerificationToken.used_at.is_(None),
                EmailVerificationToken.expires_at > now,
            )
            .values(used_at=now)
            .returning(EmailVerificationToken.user_id)
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
        """Delete tokens used before used_before or expired before expired_before.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(EmailVerificationToken).where(
            or_(
                EmailVerificationToken.used_at < used_before,
                EmailVerificationToken.expires_at < expired_before,
            )
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
