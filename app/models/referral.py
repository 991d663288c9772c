"""
Referral model.

Represents referral edges between users, one per ancestor tier.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import ReferralStatus

if TYPE_CHECKING:
    from app.models.user import User


class Referral(Base):
    """Referral model - multi-level referral edges."""

    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint(
            "referral_id", "level", name="uq_referral_referral_level"
        ),
        UniqueConstraint(
            "referrer_id", "referral_id", name="uq_referral_referrer_referral"
        ),
        CheckConstraint(
            "level >= 1 AND level <= 3", name="check_referral_level_range"
        ),
        CheckConstraint(
            "referrer_id <> referral_id", name="check_referral_not_self"
        ),
        CheckConstraint(
            "total_rewards_distributed >= 0",
            name="check_referral_rewards_non_negative",
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Referrer (ancestor receiving rewards)
    referrer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Referral (who was invited)
    referral_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Code applied by the referral
    code: Mapped[str] = mapped_column(String(8), nullable=False)

    # Referral level (1-3)
    level: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True
    )  # 1 = direct, 2 = second level, 3 = third level

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReferralStatus.ACTIVE.value,
        index=True,
    )

    # Total rewards paid out through this edge
    total_rewards_distributed: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    last_reward_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    # Relationships
    referrer: Mapped["User"] = relationship(
        "User",
        foreign_keys=[referrer_id],
    )
    referral: Mapped["User"] = relationship(
        "User",
        foreign_keys=[referral_id],
    )

    @property
    def is_active(self) -> bool:
        """Check if edge still earns rewards."""
        return self.status == ReferralStatus.ACTIVE.value

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Referral(id={self.id}, referrer_id={self.referrer_id}, "
            f"referral_id={self.referral_id}, level={self.level}, "
            f"status={self.status})>"
        )


Index(
    "idx_referral_referrer_created",
    Referral.referrer_id,
    Referral.created_at,
)
Index(
    "idx_referral_code_status",
    Referral.code,
    Referral.status,
)
