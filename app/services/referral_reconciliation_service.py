"""
Referral reconciliation service.

Verifies that the three copies of every distributed reward agree:
earning rows, edge totals and users' referral XP.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import DistributionStatus
from app.repositories.referral_earning_repository import (
    ReferralEarningRepository,
)
from app.repositories.referral_repository import ReferralRepository
from app.repositories.reward_distribution_repository import (
    RewardDistributionRepository,
)
from app.repositories.user_repository import UserRepository


class ReferralReconciliationService:
    """Service for referral ledger reconciliation."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize reconciliation service."""
        self.session = session
        self.referral_repo = ReferralRepository(session)
        self.earning_repo = ReferralEarningRepository(session)
        self.user_repo = UserRepository(session)
        self.distribution_repo = RewardDistributionRepository(session)

    async def perform_reconciliation(self) -> dict:
        """
        Perform referral ledger reconciliation.

        Checks:
        - edge.total_rewards_distributed == SUM(earnings of the edge)
        - user.total_referral_xp == SUM(edge totals where user is referrer)

        Returns:
            Dict with reconciliation results
        """
        logger.info("Starting referral reconciliation")

        edge_totals = await self.referral_repo.get_reward_totals()
        earning_totals = await self.earning_repo.get_totals_by_referral()

        edge_discrepancies = []
        for edge_id in sorted(set(edge_totals) | set(earning_totals)):
            recorded = edge_totals.get(edge_id, 0)
            earned = earning_totals.get(edge_id, 0)
            if recorded != earned:
                edge_discrepancies.append({
                    "referral_id": edge_id,
                    "recorded": recorded,
                    "earned": earned,
                })

        referrer_totals = await self.referral_repo.get_reward_totals_by_referrer()
        user_xp = await self.user_repo.get_referral_xp_by_user()

        user_discrepancies = []
        for user_id in sorted(set(referrer_totals) | set(user_xp)):
            expected = referrer_totals.get(user_id, 0)
            actual = user_xp.get(user_id, 0)
            if expected != actual:
                user_discrepancies.append({
                    "user_id": user_id,
                    "expected": expected,
                    "actual": actual,
                })

        pending = await self.distribution_repo.count(
            status=DistributionStatus.PENDING.value
        )
        dead_letter = await self.distribution_repo.count(
            status=DistributionStatus.DEAD_LETTER.value
        )

        consistent = not edge_discrepancies and not user_discrepancies

        result = {
            "success": True,
            "consistent": consistent,
            "edges_checked": len(edge_totals),
            "users_checked": len(user_xp),
            "edge_discrepancies": edge_discrepancies,
            "user_discrepancies": user_discrepancies,
            "pending_distributions": pending,
            "dead_letter_distributions": dead_letter,
        }

        if consistent:
            logger.info(
                f"Referral reconciliation complete: "
                f"{len(edge_totals)} edges, {len(user_xp)} users consistent"
            )
        else:
            logger.error(
                "Referral ledger discrepancy detected",
                extra={
                    "edge_discrepancies": len(edge_discrepancies),
                    "user_discrepancies": len(user_discrepancies),
                },
            )

        if dead_letter:
            logger.warning(
                f"{dead_letter} reward distributions in dead letter"
            )

        return result
