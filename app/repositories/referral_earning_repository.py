"""
ReferralEarning repository.

Data access layer for ReferralEarning model.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.referral_earning import ReferralEarning
from app.repositories.base import BaseRepository


class ReferralEarningRepository(
    BaseRepository[ReferralEarning]
):
    """ReferralEarning repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize referral earning repository."""
        super().__init__(ReferralEarning, session)

    async def get_by_distribution(
        self, distribution_id: int
    ) -> list[ReferralEarning]:
        """
        Get earnings created by one distribution.

        Args:
            distribution_id: RewardDistribution ID

        Returns:
            List of earnings
        """
        return await self.find_by(distribution_id=distribution_id)

    async def get_totals_by_referral(self) -> dict[int, int]:
        """
        Sum earnings per referral edge.

        Returns:
            Dict of referral_id -> total amount
        """
        stmt = (
            select(
                ReferralEarning.referral_id,
                func.sum(ReferralEarning.amount),
            )
            .group_by(ReferralEarning.referral_id)
        )
        result = await self.session.execute(stmt)
        return {
            referral_id: int(total)
            for referral_id, total in result.all()
        }
