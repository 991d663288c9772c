"""
RewardDistribution repository.

Data access layer for the reward distribution outbox.
"""

from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import DistributionStatus
from app.models.reward_distribution import RewardDistribution
from app.repositories.base import BaseRepository
from app.utils.datetime_utils import utc_now


class RewardDistributionRepository(BaseRepository[RewardDistribution]):
    """
    RewardDistribution repository.

    Handles pending referral reward propagation.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize reward distribution repository."""
        super().__init__(RewardDistribution, session)

    async def get_for_update(
        self, distribution_id: int
    ) -> Optional[RewardDistribution]:
        """
        Get distribution with a row lock.

        Args:
            distribution_id: Distribution ID

        Returns:
            Distribution or None
        """
        stmt = (
            select(RewardDistribution)
            .where(RewardDistribution.id == distribution_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending(
        self, limit: int | None = None
    ) -> List[RewardDistribution]:
        """
        Get pending distributions that are due, oldest first.

        Args:
            limit: Max number of results

        Returns:
            List of pending distributions
        """
        now = utc_now()

        stmt = (
            select(RewardDistribution)
            .where(RewardDistribution.status == DistributionStatus.PENDING.value)
            .where(
                or_(
                    RewardDistribution.next_retry_at.is_(None),
                    RewardDistribution.next_retry_at <= now,
                )
            )
            .order_by(RewardDistribution.id)
        )
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_dead_letters(self) -> List[RewardDistribution]:
        """
        Get dead-lettered distributions.

        Returns:
            List of distributions
        """
        return await self.find_by(
            status=DistributionStatus.DEAD_LETTER.value
        )
