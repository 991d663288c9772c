"""
ReferralEarning model.

Audit trail of individual referral credits.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base

if TYPE_CHECKING:
    from app.models.referral import Referral
    from app.models.reward_distribution import RewardDistribution


class ReferralEarning(Base):
    """
    ReferralEarning entity.

    One row per non-zero credit made through a referral edge:
    - Which edge (and so which ancestor) was credited
    - Which point-earning event caused it
    - How much was credited

    Attributes:
        id: Primary key
        referral_id: Foreign key to Referral
        distribution_id: Source distribution (optional)
        amount: Credited points
        created_at: Credit timestamp
    """

    __tablename__ = "referral_earnings"

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Referral edge
    referral_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referrals.id"), nullable=False, index=True
    )

    # Source event (optional for direct distributions)
    distribution_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("reward_distributions.id"),
        nullable=True,
        index=True,
    )

    # Amount
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    # Relationships
    referral: Mapped["Referral"] = relationship("Referral")
    distribution: Mapped[Optional["RewardDistribution"]] = relationship(
        "RewardDistribution"
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"ReferralEarning(id={self.id}, "
            f"referral_id={self.referral_id}, "
            f"amount={self.amount})"
        )


Index(
    "idx_referral_earning_referral_created",
    ReferralEarning.referral_id,
    ReferralEarning.created_at,
)
