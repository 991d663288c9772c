"""
Referral reconciliation task.

Daily check that earning rows, edge totals and users' referral XP agree.
Runs daily at 01:00 UTC.
"""

import asyncio

import dramatiq
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.broker import broker  # noqa: F401
from app.services.referral_reconciliation_service import (
    ReferralReconciliationService,
)
from jobs.tasks.referral_rewards import task_session


@dramatiq.actor(max_retries=3, time_limit=600_000)  # 10 min timeout
def perform_referral_reconciliation() -> None:
    """Perform daily referral ledger reconciliation."""
    logger.info("Starting referral reconciliation...")

    try:
        result = asyncio.run(_perform_reconciliation_async())

        if not result["consistent"]:
            logger.critical(
                "REFERRAL LEDGER DISCREPANCY DETECTED",
                extra={
                    "edge_discrepancies": result["edge_discrepancies"],
                    "user_discrepancies": result["user_discrepancies"],
                },
            )

    except Exception as e:
        logger.exception(f"Referral reconciliation failed: {e}")


async def _perform_reconciliation_async(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> dict:
    """Async implementation of referral reconciliation."""
    async with task_session(session_factory) as session:
        reconciliation_service = ReferralReconciliationService(session)
        return await reconciliation_service.perform_reconciliation()
