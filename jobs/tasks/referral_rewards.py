"""
Referral reward tasks.

Applies recorded point-earning events to the referral ledger.
distribute_referral_rewards is queued right after an event is recorded;
process_pending_reward_distributions runs every minute and picks up
anything that was not queued or failed earlier.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import dramatiq
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from jobs.broker import broker  # noqa: F401
from app.config.database import create_engine, create_session_maker
from app.config.settings import settings
from app.services.referral_reward_distributor import (
    ReferralRewardDistributor,
)


@asynccontextmanager
async def task_session(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """
    Open a session for one task run.

    Without a factory, a dedicated engine is created for the run to avoid
    cross-loop reuse of pooled connections.
    """
    if session_factory is not None:
        async with session_factory() as session:
            yield session
        return

    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        poolclass=NullPool,
        echo=settings.database_echo,
    )
    try:
        async with create_session_maker(engine)() as session:
            yield session
    finally:
        await engine.dispose()


# Failures are recorded on the outbox row and retried by the sweep
@dramatiq.actor(max_retries=0, time_limit=60_000)  # 1 min timeout
def distribute_referral_rewards(distribution_id: int) -> None:
    """
    Apply one reward distribution.

    Args:
        distribution_id: RewardDistribution ID
    """
    logger.info(f"Distributing referral rewards for {distribution_id}...")

    try:
        result = asyncio.run(
            _distribute_referral_rewards_async(distribution_id)
        )
        if result["success"]:
            logger.info(
                f"Referral rewards for {distribution_id} complete: "
                f"applied={result['applied']}, "
                f"total={result['total_distributed']}"
            )

    except Exception as e:
        logger.exception(f"Referral reward distribution failed: {e}")


async def _distribute_referral_rewards_async(
    distribution_id: int,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> dict:
    """Async implementation of a single reward distribution."""
    async with task_session(session_factory) as session:
        distributor = ReferralRewardDistributor(session)

        try:
            result = await distributor.apply_distribution(distribution_id)
        except Exception as e:
            await session.rollback()
            logger.error(
                f"Error applying reward distribution {distribution_id}: {e}"
            )
            await distributor.record_failure(distribution_id, str(e))
            return {"success": False, "error": str(e)}

        return {
            "success": True,
            "applied": result is not None,
            "total_distributed": result.total_distributed if result else 0,
        }


@dramatiq.actor(max_retries=3, time_limit=300_000)  # 5 min timeout
def process_pending_reward_distributions() -> None:
    """
    Apply all due pending reward distributions.

    Failed distributions are retried with exponential backoff and moved
    to dead letter after the configured number of attempts.
    """
    logger.info("Starting reward distribution sweep...")

    try:
        asyncio.run(_process_pending_reward_distributions_async())
        logger.info("Reward distribution sweep complete")

    except Exception as e:
        logger.exception(f"Reward distribution sweep failed: {e}")


async def _process_pending_reward_distributions_async(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> dict[str, int]:
    """Async implementation of the reward distribution sweep."""
    async with task_session(session_factory) as session:
        distributor = ReferralRewardDistributor(session)
        return await distributor.process_pending()
