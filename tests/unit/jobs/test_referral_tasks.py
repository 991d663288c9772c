"""
Unit tests for referral background tasks.

Runs the async task bodies against the test database.
"""

import pytest

from app.models.enums import DistributionStatus
from app.repositories.user_repository import UserRepository
from app.services.referral_reward_distributor import ReferralRewardDistributor
from jobs.tasks.referral_reconciliation import _perform_reconciliation_async
from jobs.tasks.referral_rewards import (
    _distribute_referral_rewards_async,
    _process_pending_reward_distributions_async,
)


class TestDistributeReferralRewardsTask:
    """Tests for distribute_referral_rewards."""

    @pytest.mark.asyncio
    async def test_applies_distribution(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        session_factory,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test task applies a recorded distribution once."""
        _, _, level2_id, level3_id = test_referral_chain
        distribution = await ReferralRewardDistributor(
            db_session
        ).create_distribution(level3_id, 1000)
        distribution_id = distribution.id
        await db_session.commit()

        result = await _distribute_referral_rewards_async(
            distribution_id, session_factory=session_factory
        )
        again = await _distribute_referral_rewards_async(
            distribution_id, session_factory=session_factory
        )

        assert result == {
            "success": True,
            "applied": True,
            "total_distributed": 175,
        }
        assert again == {
            "success": True,
            "applied": False,
            "total_distributed": 0,
        }

        user = await UserRepository(db_session).get_fresh(level2_id)
        assert user.total_referral_xp == 100

    @pytest.mark.asyncio
    async def test_failure_is_recorded(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        session_factory,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
        monkeypatch,
    ):
        """Test failing run is left for the sweep."""
        _, _, _, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        distribution = await distributor.create_distribution(level3_id, 1000)
        distribution_id = distribution.id
        await db_session.commit()

        async def _boom(self, *args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(ReferralRewardDistributor, "distribute", _boom)

        result = await _distribute_referral_rewards_async(
            distribution_id, session_factory=session_factory
        )

        assert result == {"success": False, "error": "boom"}

        stored = await distributor.distribution_repo.get_for_update(
            distribution_id
        )
        assert stored.status == DistributionStatus.PENDING.value
        assert stored.attempt_count == 1
        await db_session.commit()


class TestSweepTasks:
    """Tests for periodic referral tasks."""

    @pytest.mark.asyncio
    async def test_process_pending(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        session_factory,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test sweep applies pending distributions."""
        _, _, _, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        await distributor.create_distribution(level3_id, 1000)
        await distributor.create_distribution(level3_id, 200)
        await db_session.commit()

        stats = await _process_pending_reward_distributions_async(
            session_factory=session_factory
        )

        assert stats["processed"] == 2
        assert stats["applied"] == 2

        reconciliation = await _perform_reconciliation_async(
            session_factory=session_factory
        )
        assert reconciliation["consistent"] is True
        assert reconciliation["pending_distributions"] == 0
