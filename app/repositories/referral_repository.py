"""
Referral repository.

Data access layer for Referral model (the referral ledger).
"""

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.enums import ReferralStatus
from app.models.referral import Referral
from app.repositories.base import BaseRepository

if TYPE_CHECKING:
    from app.services.referral_chain_builder import ChainLink


class ReferralRepository(BaseRepository[Referral]):
    """Referral repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize referral repository."""
        super().__init__(Referral, session)

    async def create_edges(
        self,
        chain: Iterable["ChainLink"],
        referred_id: int,
        code: str,
    ) -> List[Referral]:
        """
        Create one edge per chain link in a single flush.

        A uniqueness violation on any edge fails the flush, so either
        all edges are pending in the transaction or none are.

        Args:
            chain: Ancestors with their levels
            referred_id: User being referred
            code: Referral code used

        Returns:
            Created edges ordered by level
        """
        return await self.bulk_create([
            {
                "referrer_id": link.user_id,
                "referral_id": referred_id,
                "code": code,
                "level": link.level,
                "status": ReferralStatus.ACTIVE.value,
                "total_rewards_distributed": 0,
            }
            for link in chain
        ])

    async def get_by_referral_user(
        self, referral_user_id: int
    ) -> List[Referral]:
        """
        Get all edges where user is the referral, any status.

        Args:
            referral_user_id: Referral user ID

        Returns:
            List of referrals ordered by level
        """
        stmt = (
            select(Referral)
            .where(Referral.referral_id == referral_user_id)
            .order_by(Referral.level)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_active_for_referred(
        self,
        referred_id: int,
        created_before: datetime | None = None,
        with_referrer: bool = False,
    ) -> List[Referral]:
        """
        Get active edges pointing at a referred user.

        Args:
            referred_id: Referred user ID
            created_before: Ignore edges created after this moment
            with_referrer: Eager load the referrer user

        Returns:
            List of referrals ordered by level
        """
        stmt = (
            select(Referral)
            .where(
                Referral.referral_id == referred_id,
                Referral.status == ReferralStatus.ACTIVE.value,
            )
            .order_by(Referral.level)
            .execution_options(populate_existing=True)
        )
        if created_before is not None:
            stmt = stmt.where(Referral.created_at <= created_before)
        if with_referrer:
            stmt = stmt.options(selectinload(Referral.referrer))

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_active_from_referrer(
        self,
        referrer_id: int,
        level: int | None = None,
        with_referral: bool = False,
    ) -> List[Referral]:
        """
        Get active edges of a referrer, newest first.

        Args:
            referrer_id: Referrer user ID
            level: Optional level filter (1-3)
            with_referral: Eager load the referred user

        Returns:
            List of referrals
        """
        stmt = (
            select(Referral)
            .where(
                Referral.referrer_id == referrer_id,
                Referral.status == ReferralStatus.ACTIVE.value,
            )
            .order_by(Referral.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if level is not None:
            stmt = stmt.where(Referral.level == level)
        if with_referral:
            stmt = stmt.options(selectinload(Referral.referral))

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def aggregate_by_tier(
        self, referrer_id: int
    ) -> dict[int, dict[str, int]]:
        """
        Count active edges and rewards per level for a referrer.

        Args:
            referrer_id: Referrer user ID

        Returns:
            Dict of level -> {"count", "earnings"}
        """
        stmt = (
            select(
                Referral.level,
                func.count(Referral.id),
                func.coalesce(func.sum(Referral.total_rewards_distributed), 0),
            )
            .where(
                Referral.referrer_id == referrer_id,
                Referral.status == ReferralStatus.ACTIVE.value,
            )
            .group_by(Referral.level)
            .order_by(Referral.level)
        )
        result = await self.session.execute(stmt)

        return {
            level: {"count": int(count), "earnings": int(earnings)}
            for level, count, earnings in result.all()
        }

    async def add_reward(
        self, referral_id: int, amount: int, rewarded_at: datetime
    ) -> bool:
        """
        Atomically add distributed reward to an edge.

        Args:
            referral_id: Edge ID
            amount: Points credited
            rewarded_at: Reward timestamp

        Returns:
            True if the edge was updated
        """
        stmt = (
            update(Referral)
            .where(Referral.id == referral_id)
            .values(
                total_rewards_distributed=(
                    Referral.total_rewards_distributed + amount
                ),
                last_reward_at=rewarded_at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def set_status(
        self, referred_id: int, status: ReferralStatus
    ) -> int:
        """
        Change status of all edges of a referred user.

        Args:
            referred_id: Referred user ID
            status: New status

        Returns:
            Number of edges changed
        """
        stmt = (
            update(Referral)
            .where(
                Referral.referral_id == referred_id,
                Referral.status != status.value,
            )
            .values(status=status.value)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def get_platform_stats(self) -> dict[int, dict[str, int]]:
        """
        Count edges and rewards per level across the platform.

        Returns:
            Dict of level -> {"count", "earnings"}
        """
        stmt = (
            select(
                Referral.level,
                func.count(Referral.id),
                func.coalesce(func.sum(Referral.total_rewards_distributed), 0),
            )
            .group_by(Referral.level)
            .order_by(Referral.level)
        )
        result = await self.session.execute(stmt)

        return {
            level: {"count": int(count), "earnings": int(earnings)}
            for level, count, earnings in result.all()
        }

    async def get_reward_totals(self) -> dict[int, int]:
        """
        Get distributed reward total of every edge.

        Returns:
            Dict of edge id -> total_rewards_distributed
        """
        stmt = select(Referral.id, Referral.total_rewards_distributed)
        result = await self.session.execute(stmt)
        return {edge_id: int(total) for edge_id, total in result.all()}

    async def get_reward_totals_by_referrer(self) -> dict[int, int]:
        """
        Sum distributed rewards per receiving ancestor.

        Returns:
            Dict of referrer id -> total
        """
        stmt = (
            select(
                Referral.referrer_id,
                func.sum(Referral.total_rewards_distributed),
            )
            .group_by(Referral.referrer_id)
        )
        result = await self.session.execute(stmt)
        return {
            referrer_id: int(total)
            for referrer_id, total in result.all()
        }
