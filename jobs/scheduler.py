"""
Task scheduler.

APScheduler-based periodic task scheduling for background jobs.
"""

import sys
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from jobs.tasks.referral_reconciliation import (  # noqa: E402
    perform_referral_reconciliation,
)
from jobs.tasks.referral_rewards import (  # noqa: E402
    process_pending_reward_distributions,
)


def create_scheduler() -> AsyncIOScheduler:
    """
    Create and configure task scheduler.

    Returns:
        Configured AsyncIOScheduler instance
    """
    scheduler = AsyncIOScheduler()

    # Pending reward distributions - every 1 minute
    scheduler.add_job(
        process_pending_reward_distributions.send,
        trigger=IntervalTrigger(minutes=1),
        id="reward_distribution_sweep",
        name="Reward Distribution Sweep",
        replace_existing=True,
    )

    # Referral reconciliation - every day at 01:00 UTC
    scheduler.add_job(
        perform_referral_reconciliation.send,
        trigger=CronTrigger(hour=1, minute=0),
        id="referral_reconciliation",
        name="Referral Reconciliation",
        replace_existing=True,
    )

    logger.info("Task scheduler configured with 2 jobs")

    return scheduler


async def start_scheduler() -> AsyncIOScheduler:
    """Start the task scheduler."""
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Task scheduler started")
    return scheduler


if __name__ == "__main__":
    import asyncio

    from app.config.logging import setup_logging

    async def main():
        setup_logging("scheduler")
        await start_scheduler()
        # Keep running
        try:
            await asyncio.Event().wait()
        except KeyboardInterrupt:
            logger.info("Scheduler stopped")

    asyncio.run(main())
