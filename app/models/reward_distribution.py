"""
RewardDistribution model.

Durable marker of a point-earning event awaiting referral propagation.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import DistributionStatus

if TYPE_CHECKING:
    from app.models.user import User


class RewardDistribution(Base):
    """
    RewardDistribution entity (outbox).

    Implements reliable reward propagation with exponential backoff:
    - Written in its own transaction before the background task is queued
    - Applied at most once (status moves away from pending on success)
    - Dead letter state for permanent failures

    Attributes:
        id: Primary key
        user_id: User who earned the points
        amount: Points earned
        status: pending / applied / dead_letter
        occurred_at: When the points were earned
        attempt_count: Number of failed attempts
        max_retries: Maximum retry limit
        last_attempt_at: Last failed attempt timestamp
        next_retry_at: Next scheduled retry
        last_error: Last error message
        total_distributed: Sum credited to ancestors once applied
        applied_at: When the rewards were credited
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "reward_distributions"

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Earner
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Event details
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DistributionStatus.PENDING.value,
        index=True,
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    # Retry logic
    attempt_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=5
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Result
    total_distributed: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    applied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    # Relationships
    user: Mapped["User"] = relationship("User")

    @property
    def is_pending(self) -> bool:
        """Check if distribution still has to be applied."""
        return self.status == DistributionStatus.PENDING.value

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"RewardDistribution(id={self.id}, "
            f"user_id={self.user_id}, "
            f"amount={self.amount}, "
            f"status={self.status})"
        )


Index(
    "idx_reward_distribution_status_retry",
    RewardDistribution.status,
    RewardDistribution.next_retry_at,
)
