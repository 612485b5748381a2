"""Repository for User CRUD operations.

Provides database access for the users table. Emails are stored and
compared lowercased.
"""

from datetime import datetime

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: int) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: Bigint primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Fetch a user by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.email == email.strip().lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def email_registered(db: AsyncSession, email: str) -> bool:
        """Check whether an account exists for an email."""
        stmt = select(exists().where(User.email == email.strip().lower()))
        result = await db.execute(stmt)
        return bool(result.scalar())

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        name: str,
        password_hash: str,
        phone: str | None = None,
        role: str = "rider",
        email_verified: datetime | None = None,
    ) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            email: User email address.
            name: Display name.
            password_hash: bcrypt hash.
            phone: Optional phone number.
            role: "rider" (default) or "admin".
            email_verified: Verification time; None leaves the account
                unverified.

        Returns:
            Created User with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If email already exists.
        """
        user = User(
            email=email.strip().lower(),
            name=name,
            password_hash=password_hash,
            phone=phone,
            role=role,
            email_verified=email_verified,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def mark_verified(db: AsyncSession, user_id: int, *, now: datetime) -> None:
        """Set email_verified, keeping the first verification time."""
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(email_verified=func.coalesce(User.email_verified, now))
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
