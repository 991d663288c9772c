"""
User model.

Represents a participant of the game in the referral ledger.
"""

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base


class User(Base):
    """User model - game participants."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint('xp >= 0', name='check_user_xp_non_negative'),
        CheckConstraint(
            'total_referral_xp >= 0',
            name='check_user_total_referral_xp_non_negative'
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # External identity
    telegram_id: Mapped[int] = mapped_column(
        BigInteger, unique=True, index=True, nullable=False
    )
    username: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )

    # Referral
    referral_code: Mapped[str | None] = mapped_column(
        String(8), nullable=True, unique=True, index=True
    )
    referrer_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    # Ancestor ids, tier 1 first
    referral_chain: Mapped[list[int]] = mapped_column(
        JSON, nullable=False, default=list
    )

    # Points
    xp: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )
    total_referral_xp: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )
    last_active: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    referrer: Mapped[Optional["User"]] = relationship(
        "User",
        remote_side=[id],
        back_populates="referrals",
        foreign_keys=[referrer_id],
    )
    referrals: Mapped[list["User"]] = relationship(
        "User",
        back_populates="referrer",
        foreign_keys=[referrer_id]
    )

    @property
    def is_bound(self) -> bool:
        """Check if user already has a referrer."""
        return self.referrer_id is not None

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<User(id={self.id}, telegram_id={self.telegram_id}, "
            f"username={self.username})>"
        )
