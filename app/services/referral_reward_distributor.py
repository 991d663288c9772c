"""
Referral reward distributor.

Propagates reward shares up the persisted referral edges whenever the
referred user earns points. Each point-earning event is recorded in the
reward_distributions outbox first and applied at most once, with
exponential backoff and a dead letter state for permanent failures.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.models.enums import DistributionStatus
from app.models.reward_distribution import RewardDistribution
from app.repositories.referral_earning_repository import (
    ReferralEarningRepository,
)
from app.repositories.referral_repository import ReferralRepository
from app.repositories.reward_distribution_repository import (
    RewardDistributionRepository,
)
from app.repositories.user_repository import UserRepository
from app.services.referral_reward_calculator import calculate_referral_reward
from app.utils.datetime_utils import utc_now
from app.utils.exceptions import (
    InvalidAmountError,
    InvalidTierError,
    ParticipantNotFoundError,
)

# Stored error text is truncated to this length
MAX_ERROR_LENGTH = 1000


@dataclass
class RewardCredit:
    """Reward credited to one ancestor."""

    referral_id: int
    referrer_id: int
    level: int
    amount: int


@dataclass
class DistributionResult:
    """Outcome of distributing one point-earning event."""

    referred_id: int
    base_amount: int
    credits: list[RewardCredit] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def total_distributed(self) -> int:
        """Sum of all credited rewards."""
        return sum(credit.amount for credit in self.credits)


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(f"Invalid XP amount: {amount!r}")


class ReferralRewardDistributor:
    """Reward distributor with per-ancestor isolation and outbox retries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize reward distributor."""
        self.session = session
        self.referral_repo = ReferralRepository(session)
        self.earning_repo = ReferralEarningRepository(session)
        self.user_repo = UserRepository(session)
        self.distribution_repo = RewardDistributionRepository(session)

    async def distribute(
        self,
        referred_id: int,
        base_amount: int,
        occurred_at: datetime | None = None,
        distribution_id: int | None = None,
        commit: bool = True,
    ) -> DistributionResult:
        """
        Credit every active ancestor of a user for earned points.

        Each credit runs in its own savepoint, so an ancestor that cannot
        be credited does not block the others. Transient database errors
        are not absorbed per ancestor: they abort the whole event so the
        outbox row is retried as a unit. Edges created after the event
        are ignored.

        Args:
            referred_id: User who earned the points
            base_amount: Points earned
            occurred_at: Event time (defaults to now)
            distribution_id: Outbox row being applied, if any
            commit: Commit the outer transaction when done

        Returns:
            DistributionResult

        Raises:
            InvalidAmountError: Negative or non-integer amount
            OperationalError: Lock or connection failure during a credit
        """
        _validate_amount(base_amount)

        occurred_at = occurred_at or utc_now()
        result = DistributionResult(
            referred_id=referred_id, base_amount=base_amount
        )

        edges = await self.referral_repo.get_active_for_referred(
            referred_id, created_before=occurred_at
        )

        if not edges:
            logger.debug(
                "No referrers found for user", extra={"user_id": referred_id}
            )

        # Savepoint rollbacks may expire loaded edges
        targets = [(edge.id, edge.referrer_id, edge.level) for edge in edges]

        for referral_id, referrer_id, level in targets:
            try:
                reward = calculate_referral_reward(level, base_amount)
            except InvalidTierError:
                logger.warning(
                    f"Referral edge {referral_id} has invalid level {level}",
                    extra={"referral_id": referral_id},
                )
                result.skipped.append(referral_id)
                continue

            if reward == 0:
                result.skipped.append(referral_id)
                continue

            try:
                await self._credit(
                    referral_id, referrer_id, reward, distribution_id
                )
            except (ParticipantNotFoundError, IntegrityError) as e:
                logger.error(
                    f"Error processing individual referral reward: {e}",
                    extra={
                        "referral_id": referral_id,
                        "referrer_id": referrer_id,
                        "referral_user_id": referred_id,
                    },
                )
                result.failed.append(referral_id)
                continue

            result.credits.append(
                RewardCredit(
                    referral_id=referral_id,
                    referrer_id=referrer_id,
                    level=level,
                    amount=reward,
                )
            )

            logger.info(
                "Referral reward created",
                extra={
                    "referrer_id": referrer_id,
                    "referral_user_id": referred_id,
                    "level": level,
                    "amount": reward,
                    "distribution_id": distribution_id,
                },
            )

        if commit:
            await self.session.commit()

        return result

    async def _credit(
        self,
        referral_id: int,
        referrer_id: int,
        amount: int,
        distribution_id: int | None,
    ) -> None:
        async with self.session.begin_nested():
            credited = await self.user_repo.add_referral_xp(referrer_id, amount)
            if not credited:
                raise ParticipantNotFoundError(
                    f"Referrer {referrer_id} not found for reward"
                )

            await self.referral_repo.add_reward(
                referral_id, amount, utc_now()
            )
            await self.earning_repo.create(
                referral_id=referral_id,
                distribution_id=distribution_id,
                amount=amount,
            )

    async def create_distribution(
        self,
        user_id: int,
        amount: int,
        occurred_at: datetime | None = None,
    ) -> RewardDistribution:
        """
        Record a point-earning event in the outbox and commit.

        Args:
            user_id: User who earned the points
            amount: Points earned
            occurred_at: Event time (defaults to now)

        Returns:
            Pending RewardDistribution

        Raises:
            InvalidAmountError: Negative or non-integer amount
            ParticipantNotFoundError: User does not exist
        """
        _validate_amount(amount)

        if not await self.user_repo.exists(id=user_id):
            raise ParticipantNotFoundError()

        distribution = await self.distribution_repo.create(
            user_id=user_id,
            amount=amount,
            status=DistributionStatus.PENDING.value,
            occurred_at=occurred_at or utc_now(),
            attempt_count=0,
            max_retries=settings.referral_distribution_max_retries,
        )
        await self.session.commit()

        logger.debug(
            f"Reward distribution {distribution.id} recorded",
            extra={"user_id": user_id, "amount": amount},
        )

        return distribution

    async def apply_distribution(
        self, distribution_id: int
    ) -> DistributionResult | None:
        """
        Apply a pending distribution exactly once.

        The outbox row is locked and marked applied in the same
        transaction as the credits. Rows that are not pending are left
        untouched.

        Args:
            distribution_id: RewardDistribution ID

        Returns:
            DistributionResult, or None if nothing was applied
        """
        distribution = await self.distribution_repo.get_for_update(
            distribution_id
        )

        if distribution is None:
            logger.warning(f"Reward distribution {distribution_id} not found")
            await self.session.rollback()
            return None

        if not distribution.is_pending:
            logger.info(
                f"Reward distribution {distribution_id} already "
                f"{distribution.status}, skipping"
            )
            await self.session.rollback()
            return None

        result = await self.distribute(
            distribution.user_id,
            distribution.amount,
            occurred_at=distribution.occurred_at,
            distribution_id=distribution.id,
            commit=False,
        )

        distribution.status = DistributionStatus.APPLIED.value
        distribution.total_distributed = result.total_distributed
        distribution.applied_at = utc_now()
        distribution.next_retry_at = None
        await self.session.commit()

        logger.info(
            f"Reward distribution {distribution_id} applied",
            extra={
                "user_id": result.referred_id,
                "amount": result.base_amount,
                "credited": len(result.credits),
                "total_distributed": result.total_distributed,
            },
        )

        return result

    async def record_failure(
        self, distribution_id: int, error: str
    ) -> RewardDistribution | None:
        """
        Record a failed attempt and schedule the next one.

        Moves the distribution to dead letter once max_retries attempts
        have failed.

        Args:
            distribution_id: RewardDistribution ID
            error: Error message

        Returns:
            Updated distribution, or None if it is not pending
        """
        distribution = await self.distribution_repo.get_for_update(
            distribution_id
        )
        if distribution is None or not distribution.is_pending:
            await self.session.rollback()
            return None

        now = utc_now()
        attempt = distribution.attempt_count
        distribution.attempt_count = attempt + 1
        distribution.last_attempt_at = now
        distribution.last_error = error[:MAX_ERROR_LENGTH]

        if distribution.attempt_count >= distribution.max_retries:
            distribution.status = DistributionStatus.DEAD_LETTER.value
            distribution.next_retry_at = None
            logger.error(
                f"Reward distribution {distribution_id} moved to dead letter "
                f"after {distribution.attempt_count} attempts: {error}"
            )
        else:
            distribution.next_retry_at = self._calculate_next_retry_time(
                attempt, now
            )
            logger.warning(
                f"Reward distribution {distribution_id} failed "
                f"(attempt {distribution.attempt_count}/"
                f"{distribution.max_retries}), next retry at "
                f"{distribution.next_retry_at.isoformat()}: {error}"
            )

        await self.session.commit()
        return distribution

    async def process_pending(
        self, limit: int | None = None
    ) -> dict[str, int]:
        """
        Apply all due pending distributions.

        Called by background job (every minute).

        Args:
            limit: Max distributions per sweep

        Returns:
            Dict with processed, applied, failed, dead_lettered counts
        """
        pending = await self.distribution_repo.get_pending(
            limit or settings.referral_distribution_batch_size
        )
        distribution_ids = [d.id for d in pending]
        await self.session.commit()

        stats = {"processed": 0, "applied": 0, "failed": 0, "dead_lettered": 0}
        if not distribution_ids:
            return stats

        logger.info(
            f"Processing {len(distribution_ids)} pending reward distributions..."
        )

        for distribution_id in distribution_ids:
            stats["processed"] += 1
            try:
                result = await self.apply_distribution(distribution_id)
            except Exception as e:
                await self.session.rollback()
                logger.error(
                    f"Error applying reward distribution {distribution_id}: {e}"
                )
                updated = await self.record_failure(distribution_id, str(e))
                if (
                    updated is not None
                    and updated.status == DistributionStatus.DEAD_LETTER.value
                ):
                    stats["dead_lettered"] += 1
                else:
                    stats["failed"] += 1
                continue

            if result is not None:
                stats["applied"] += 1

        logger.info(
            f"Reward distribution sweep complete: {stats['applied']} applied, "
            f"{stats['failed']} failed, {stats['dead_lettered']} dead lettered "
            f"out of {stats['processed']} total"
        )

        return stats

    async def get_dead_letters(self) -> list[RewardDistribution]:
        """Get dead-lettered distributions (for admin review)."""
        return await self.distribution_repo.get_dead_letters()

    def _calculate_next_retry_time(
        self, attempt_count: int, now: datetime | None = None
    ) -> datetime:
        """
        Calculate next retry time using exponential backoff.

        Formula: delay = BASE_DELAY * 2^attempt_count

        Args:
            attempt_count: Failed attempts before this one
            now: Reference time

        Returns:
            Next retry datetime
        """
        delay_seconds = (
            settings.referral_distribution_base_delay_seconds
            * (2 ** attempt_count)
        )
        return (now or utc_now()) + timedelta(seconds=delay_seconds)
