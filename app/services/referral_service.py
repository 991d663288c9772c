"""
Referral service.

Public entry point of the referral ledger: referral codes, code
application, reward triggers and statistics.
"""

import asyncio
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.models.enums import ReferralApplicationState, ReferralStatus
from app.models.reward_distribution import RewardDistribution
from app.repositories.referral_repository import ReferralRepository
from app.repositories.user_repository import UserRepository
from app.services.referral_application import (
    ApplyCodeResult,
    ReferralApplication,
)
from app.services.referral_reward_distributor import (
    ReferralRewardDistributor,
)
from app.services.user_service import UserService
from app.utils.exceptions import (
    ParticipantNotFoundError,
    TransactionAbortedError,
    UniquenessExhaustedError,
)
from app.utils.referral_codes import (
    generate_referral_code,
    is_well_formed_referral_code,
    normalize_referral_code,
)

# Linear backoff between conflicting attempts
RETRY_DELAY_SECONDS = 0.05


class ReferralService:
    """Referral service for managing referral chains and rewards."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize referral service."""
        self.session = session
        self.referral_repo = ReferralRepository(session)
        self.user_repo = UserRepository(session)
        self.user_service = UserService(session)
        self.distributor = ReferralRewardDistributor(session)

    async def request_or_generate_code(self, user_id: int) -> dict[str, str]:
        """
        Get user's referral code, generating it on first request.

        Repeated calls return the same code.

        Args:
            user_id: User ID

        Returns:
            Dict with referral_code and referral_link

        Raises:
            ParticipantNotFoundError: User does not exist
            UniquenessExhaustedError: No free code found
            TransactionAbortedError: Conflicts on every attempt
        """
        attempts = settings.referral_apply_max_attempts

        for attempt in range(1, attempts + 1):
            try:
                code = await self._get_or_assign_code(user_id)
            except TransactionAbortedError as e:
                logger.warning(
                    f"Referral code request conflict "
                    f"(attempt {attempt}/{attempts}): {e}",
                    extra={"user_id": user_id},
                )
                if attempt == attempts:
                    raise
                await asyncio.sleep(RETRY_DELAY_SECONDS * attempt)
                continue

            return {
                "referral_code": code,
                "referral_link": self.user_service.generate_referral_link(
                    code
                ),
            }

        raise TransactionAbortedError()

    async def _get_or_assign_code(self, user_id: int) -> str:
        try:
            user = await self.user_repo.get_for_update(user_id)
            if user is None:
                raise ParticipantNotFoundError()

            if user.referral_code:
                code = user.referral_code
                await self.session.commit()
                return code

            code = None
            for _ in range(settings.referral_code_max_attempts):
                candidate = generate_referral_code()
                if not is_well_formed_referral_code(candidate):
                    logger.warning(
                        f"Discarding malformed generated code {candidate!r}",
                        extra={"user_id": user_id},
                    )
                    continue
                candidate = normalize_referral_code(candidate)
                if not await self.user_repo.referral_code_exists(candidate):
                    code = candidate
                    break

            if code is None:
                raise UniquenessExhaustedError()

            user.referral_code = code
            await self.session.commit()
        except (OperationalError, IntegrityError) as e:
            await self.session.rollback()
            raise TransactionAbortedError(str(e.orig or e)) from e
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Generated referral code {code} for user {user_id}",
            extra={"user_id": user_id},
        )

        return code

    async def apply_code(self, user_id: int, code: object) -> ApplyCodeResult:
        """
        Apply a referral code for a user.

        Validation failures are returned as a rejected result. Conflicts
        with concurrent writes are retried a bounded number of times.

        Args:
            user_id: Applicant user ID
            code: Referral code as entered

        Returns:
            ApplyCodeResult
        """
        attempts = settings.referral_apply_max_attempts

        for attempt in range(1, attempts + 1):
            application = ReferralApplication(self.session, user_id, code)
            try:
                return await application.run()
            except TransactionAbortedError as e:
                logger.warning(
                    f"Referral application conflict "
                    f"(attempt {attempt}/{attempts}): {e}",
                    extra={"user_id": user_id},
                )
                if attempt < attempts:
                    await asyncio.sleep(RETRY_DELAY_SECONDS * attempt)

        error = TransactionAbortedError()
        return ApplyCodeResult(
            success=False,
            state=ReferralApplicationState.REJECTED,
            reason=error.reason,
            message=error.message,
        )

    async def on_points_earned(
        self, user_id: int, amount: int
    ) -> RewardDistribution:
        """
        Record a point-earning event and trigger reward propagation.

        The event is committed to the outbox before the background task
        is queued. If queuing fails, the periodic sweep picks it up.

        Args:
            user_id: User who earned the points
            amount: Points earned

        Returns:
            Pending RewardDistribution

        Raises:
            InvalidAmountError: Negative or non-integer amount
            ParticipantNotFoundError: User does not exist
        """
        distribution = await self.distributor.create_distribution(
            user_id, amount
        )

        try:
            from jobs.tasks.referral_rewards import (
                distribute_referral_rewards,
            )

            distribute_referral_rewards.send(distribution.id)
        except Exception as e:
            logger.warning(
                f"Failed to queue reward distribution {distribution.id}, "
                f"left for the periodic sweep: {e}"
            )

        return distribution

    async def get_referral_stats(self, user_id: int) -> dict[str, Any]:
        """
        Get referral statistics of a user.

        Args:
            user_id: User ID

        Returns:
            Dict with code, link, totals, per-tier stats and direct referrals

        Raises:
            ParticipantNotFoundError: User does not exist
        """
        user = await self.user_repo.get_fresh(user_id)
        if user is None:
            raise ParticipantNotFoundError()

        direct_edges = await self.referral_repo.get_active_from_referrer(
            user_id, level=1, with_referral=True
        )
        tier_stats = await self.referral_repo.aggregate_by_tier(user_id)
        total_referrals = await self.user_repo.count_direct_referrals(user_id)

        referral_link = None
        if user.referral_code:
            referral_link = self.user_service.generate_referral_link(
                user.referral_code
            )

        return {
            "referral_code": user.referral_code,
            "referral_link": referral_link,
            "total_referrals": total_referrals,
            "total_earnings": user.total_referral_xp or 0,
            "tier_stats": {
                f"tier{level}": stats for level, stats in tier_stats.items()
            },
            "direct_referrals": [
                {
                    "username": edge.referral.username,
                    "telegram_id": edge.referral.telegram_id,
                    "rewards_generated": edge.total_rewards_distributed,
                    "joined_at": edge.created_at,
                    "last_active": edge.referral.last_active,
                }
                for edge in direct_edges
            ],
        }

    async def get_incoming_rewards(self, user_id: int) -> dict[str, Any]:
        """
        Get rewards generated by a user for their ancestors.

        Args:
            user_id: Referred user ID

        Returns:
            Dict with rewards per ancestor and total_received
        """
        edges = await self.referral_repo.get_active_for_referred(
            user_id, with_referrer=True
        )

        return {
            "rewards": [
                {
                    "referrer": {
                        "username": edge.referrer.username,
                        "telegram_id": edge.referrer.telegram_id,
                    },
                    "tier": edge.level,
                    "total_rewards": edge.total_rewards_distributed,
                    "start_date": edge.created_at,
                    "last_reward_date": edge.last_reward_at,
                }
                for edge in edges
            ],
            "total_received": sum(
                edge.total_rewards_distributed for edge in edges
            ),
        }

    async def expire_referrals(self, user_id: int) -> int:
        """
        Stop rewards from a referred user to all their ancestors.

        Edges are kept for history with status expired.

        Args:
            user_id: Referred user ID

        Returns:
            Number of edges expired
        """
        expired = await self.referral_repo.set_status(
            user_id, ReferralStatus.EXPIRED
        )
        await self.session.commit()

        if expired:
            logger.info(
                "Referral edges expired",
                extra={"user_id": user_id, "count": expired},
            )

        return expired

    async def get_platform_referral_stats(self) -> dict[str, Any]:
        """
        Get platform-wide referral statistics.

        Returns:
            Dict with total referrals, earnings breakdown
        """
        by_level = await self.referral_repo.get_platform_stats()
        total_referral_xp = await self.user_repo.get_total_referral_xp()

        return {
            "total_referrals": sum(s["count"] for s in by_level.values()),
            "total_earnings": sum(s["earnings"] for s in by_level.values()),
            "total_referral_xp": total_referral_xp,
            "by_level": by_level,
        }
