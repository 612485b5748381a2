"""Tests for EmailVerificationService against PostgreSQL."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.core.config import settings
from app.models import EmailVerificationToken
from app.repositories.user_repository import UserRepository
from app.services.email_verification import (
    EmailVerificationService,
    hash_verification_token,
)
from tests.conftest import GUEST_EMAIL, RIDER_EMAIL

_NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def new_user(db_session):
    """Freshly registered, unverified account."""
    user = await UserRepository.create(
        db_session, email=GUEST_EMAIL, name="Gina Guest", password_hash="x"
    )
    await db_session.commit()
    return user


class TestIssue:
    """Tests for issue and reissue_for_email."""

    @pytest.mark.asyncio
    async def test_only_hash_stored(self, db_session, new_user):
        """The plain token never reaches the database."""
        token = await EmailVerificationService(db_session).issue(new_user, now=_NOW)

        record = (await db_session.execute(select(EmailVerificationToken))).scalar_one()
        assert record.token_hash == hash_verification_token(token)
        assert record.token_hash != token
        assert record.user_id == new_user.id
        assert record.expires_at == _NOW + timedelta(
            hours=settings.email_verification_ttl_hours
        )

    @pytest.mark.asyncio
    async def test_reissue_for_unverified_account(self, db_session, new_user):
        """An unverified account gets a fresh token."""
        reissued = await EmailVerificationService(db_session).reissue_for_email(
            "Guest@Example.com", now=_NOW
        )
        assert reissued is not None
        user, token = reissued
        assert user.id == new_user.id
        assert token

    @pytest.mark.asyncio
    async def test_no_reissue_for_verified_or_unknown(self, db_session, rider_user):
        """Verified and unknown emails get None."""
        service = EmailVerificationService(db_session)
        assert await service.reissue_for_email(RIDER_EMAIL, now=_NOW) is None
        assert await service.reissue_for_email("nobody@example.com", now=_NOW) is None


class TestVerify:
    """Tests for verify."""

    @pytest.mark.asyncio
    async def test_verify_marks_account(self, db_session, new_user):
        """A valid token sets email_verified to the redemption time."""
        service = EmailVerificationService(db_session)
        token = await service.issue(new_user, now=_NOW)

        user = await service.verify(token, now=_NOW + timedelta(minutes=5))
        assert user is not None
        assert user.id == new_user.id
        assert user.email_verified == _NOW + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, db_session, new_user):
        """The second redemption of a token returns None."""
        service = EmailVerificationService(db_session)
        token = await service.issue(new_user, now=_NOW)

        assert await service.verify(token, now=_NOW) is not None
        assert await service.verify(token, now=_NOW) is None

    @pytest.mark.asyncio
    async def test_expired_token(self, db_session, new_user):
        """A token past its lifetime does not verify."""
        service = EmailVerificationService(db_session)
        token = await service.issue(new_user, now=_NOW)
        later = _NOW + timedelta(hours=settings.email_verification_ttl_hours, seconds=1)

        assert await service.verify(token, now=later) is None
        await db_session.refresh(new_user)
        assert new_user.email_verified is None

    @pytest.mark.asyncio
    async def test_unknown_token(self, db_session, new_user):
        """A token that was never issued returns None."""
        assert await EmailVerificationService(db_session).verify("nope", now=_NOW) is None

    @pytest.mark.asyncio
    async def test_older_token_still_works_after_reissue(self, db_session, new_user):
        """Reissuing does not revoke links already sent."""
        service = EmailVerificationService(db_session)
        first = await service.issue(new_user, now=_NOW)
        await service.issue(new_user, now=_NOW)

        assert await service.verify(first, now=_NOW) is not None


class TestConcurrentVerify:
    """Parallel redemption of one token from separate sessions."""

    @pytest.mark.asyncio
    async def test_parallel_clicks_verify_once(self, session_factory, new_user):
        """Two simultaneous clicks on one link: one user, one None."""
        async with session_factory() as session:
            token = await EmailVerificationService(session).issue(new_user, now=_NOW)
            await session.commit()

        async def verify():
            async with session_factory() as session:
                user = await EmailVerificationService(session).verify(token, now=_NOW)
                await session.commit()
                return user

        results = await asyncio.gather(verify(), verify(), verify())
        verified = [user for user in results if user is not None]
        assert len(verified) == 1
        assert verified[0].id == new_user.id
