"""Guest access code model - one-time code plus magic link per request.

The numeric code and the magic token point at the same row and share a
single used_at flag: redeeming either one burns both.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class GuestAccessCode(Base):
    """Issued guest access credential.

    Usable iff used_at is NULL, now < expires_at and attempts < the cap.

    Attributes:
        id: Bigint identity primary key.
        email: Lowercased email the code was sent to.
        code_hash: bcrypt hash of the six-digit code.
        token: Magic link token, stored as-is.
        expires_at: Expiry for both code and token.
        used_at: Set once on successful redemption.
        attempts: Failed code verifications, never decreases.
        created_at: Issue timestamp.
        ip_created: Client IP that requested the code.
    """

    __tablename__ = "guest_access_codes"
    __table_args__ = (
        Index(
            "ix_guest_access_codes_email_created",
            text("lower(email)"),
            text("created_at DESC"),
        ),
    )

    id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    ip_created: Mapped[str | None] = mapped_column(String(64), nullable=True)
