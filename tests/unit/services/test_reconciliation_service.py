"""
Unit tests for ReferralReconciliationService.

Tests consistency checks between earning rows, edge totals and XP.
"""

import pytest
from sqlalchemy import update

from app.models.referral import Referral
from app.services.referral_reconciliation_service import (
    ReferralReconciliationService,
)
from app.services.referral_reward_distributor import ReferralRewardDistributor


class TestReferralReconciliation:
    """Tests for perform_reconciliation."""

    @pytest.mark.asyncio
    async def test_consistent_ledger(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test ledger after regular distributions."""
        _, _, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        await distributor.distribute(level3_id, 1000)
        await distributor.distribute(level2_id, 480)
        await distributor.create_distribution(level3_id, 10)

        result = await ReferralReconciliationService(
            db_session
        ).perform_reconciliation()

        assert result["success"] is True
        assert result["consistent"] is True
        assert result["edges_checked"] == 6
        assert result["users_checked"] == 3
        assert result["edge_discrepancies"] == []
        assert result["user_discrepancies"] == []
        assert result["pending_distributions"] == 1
        assert result["dead_letter_distributions"] == 0

    @pytest.mark.asyncio
    async def test_discrepancy_detected(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test edge total changed outside the distributor."""
        _, _, level2_id, level3_id = test_referral_chain
        await ReferralRewardDistributor(db_session).distribute(level3_id, 1000)

        await db_session.execute(
            update(Referral)
            .where(Referral.referral_id == level3_id, Referral.level == 1)
            .values(total_rewards_distributed=105)
        )
        await db_session.commit()

        result = await ReferralReconciliationService(
            db_session
        ).perform_reconciliation()

        assert result["consistent"] is False
        assert len(result["edge_discrepancies"]) == 1
        assert result["edge_discrepancies"][0]["recorded"] == 105
        assert result["edge_discrepancies"][0]["earned"] == 100
        assert result["user_discrepancies"] == [
            {"user_id": level2_id, "expected": 105, "actual": 100}
        ]
