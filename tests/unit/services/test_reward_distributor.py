"""
Unit tests for ReferralRewardDistributor.

Tests reward propagation, isolation of failing ancestors and the
reward distribution outbox.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.config.settings import settings
from app.models.enums import DistributionStatus
from app.repositories.referral_earning_repository import (
    ReferralEarningRepository,
)
from app.repositories.referral_repository import ReferralRepository
from app.repositories.user_repository import UserRepository
from app.services.referral_reward_distributor import ReferralRewardDistributor
from app.utils.datetime_utils import utc_now
from app.utils.exceptions import InvalidAmountError


async def _xp(db_session, user_id):
    user = await UserRepository(db_session).get_fresh(user_id)
    return user.xp, user.total_referral_xp


class TestDistribute:
    """Tests for distribute."""

    @pytest.mark.asyncio
    async def test_reward_schedule(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test 1000 points give 100 / 50 / 25 to tiers 1-3."""
        root_id, level1_id, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)

        result = await distributor.distribute(level3_id, 1000)

        assert [(c.referrer_id, c.level, c.amount) for c in result.credits] == [
            (level2_id, 1, 100),
            (level1_id, 2, 50),
            (root_id, 3, 25),
        ]
        assert result.total_distributed == 175
        assert await _xp(db_session, level2_id) == (100, 100)
        assert await _xp(db_session, level1_id) == (50, 50)
        assert await _xp(db_session, root_id) == (25, 25)
        # Earner is not credited
        assert await _xp(db_session, level3_id) == (0, 0)

        edges = await ReferralRepository(db_session).get_by_referral_user(
            level3_id
        )
        assert [e.total_rewards_distributed for e in edges] == [100, 50, 25]
        assert all(e.last_reward_at is not None for e in edges)

        earnings = await ReferralEarningRepository(db_session).find_all()
        assert sorted(e.amount for e in earnings) == [25, 50, 100]

    @pytest.mark.asyncio
    async def test_rewards_accumulate(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test edge totals equal the sum of per-event rewards."""
        root_id, _, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)

        for amount in (1000, 333, 40, 7):
            await distributor.distribute(level3_id, amount)

        edges = await ReferralRepository(db_session).get_by_referral_user(
            level3_id
        )
        # tier 1: 100 + 33 + 4 + 0, tier 3: 25 + 8 + 1 + 0
        assert edges[0].total_rewards_distributed == 137
        assert edges[2].total_rewards_distributed == 34
        assert await _xp(db_session, level2_id) == (137, 137)

        totals = await ReferralEarningRepository(
            db_session
        ).get_totals_by_referral()
        assert {e.id: e.total_rewards_distributed for e in edges} == totals

    @pytest.mark.asyncio
    async def test_zero_rewards_are_skipped(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test small amounts that round to zero."""
        _, _, _, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)

        result = await distributor.distribute(level3_id, 9)

        assert result.credits == []
        assert len(result.skipped) == 3
        assert await ReferralEarningRepository(db_session).count() == 0

    @pytest.mark.asyncio
    async def test_unbound_user_distributes_nothing(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        create_user_helper,  # pylint: disable=redefined-outer-name
    ):
        """Test user without referrer."""
        user_id = (await create_user_helper()).id

        result = await ReferralRewardDistributor(db_session).distribute(
            user_id, 1000
        )

        assert result.total_distributed == 0

    @pytest.mark.asyncio
    async def test_rewards_are_not_retroactive(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test events before the binding earn nothing."""
        _, _, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)

        result = await distributor.distribute(
            level3_id, 1000, occurred_at=utc_now() - timedelta(hours=1)
        )

        assert result.credits == []
        assert await _xp(db_session, level2_id) == (0, 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [-1, 1.5, "10"])
    async def test_invalid_amount(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
        amount,
    ):
        """Test invalid amounts are rejected before any write."""
        _, _, _, level3_id = test_referral_chain

        with pytest.raises(InvalidAmountError):
            await ReferralRewardDistributor(db_session).distribute(
                level3_id, amount
            )

    @pytest.mark.asyncio
    async def test_missing_ancestor_does_not_block_others(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
        monkeypatch,
    ):
        """Test an ancestor that cannot be credited is skipped."""
        root_id, level1_id, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        original = distributor.user_repo.add_referral_xp

        async def _add_referral_xp(user_id, amount):
            if user_id == level1_id:
                return False
            return await original(user_id, amount)

        monkeypatch.setattr(
            distributor.user_repo, "add_referral_xp", _add_referral_xp
        )

        result = await distributor.distribute(level3_id, 1000)

        assert [c.referrer_id for c in result.credits] == [level2_id, root_id]
        assert len(result.failed) == 1
        assert await _xp(db_session, level2_id) == (100, 100)
        assert await _xp(db_session, level1_id) == (0, 0)
        assert await _xp(db_session, root_id) == (25, 25)

    @pytest.mark.asyncio
    async def test_failed_credit_is_rolled_back(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
        monkeypatch,
    ):
        """Test a failure after the XP update undoes that credit only."""
        root_id, level1_id, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        edges = await distributor.referral_repo.get_by_referral_user(
            level3_id
        )
        failing_edge_id = edges[1].id
        original = distributor.referral_repo.add_reward

        async def _add_reward(referral_id, amount, rewarded_at):
            if referral_id == failing_edge_id:
                raise IntegrityError("UPDATE referrals", {}, Exception("check"))
            return await original(referral_id, amount, rewarded_at)

        monkeypatch.setattr(distributor.referral_repo, "add_reward", _add_reward)

        result = await distributor.distribute(level3_id, 1000)

        assert result.failed == [failing_edge_id]
        assert result.total_distributed == 125
        # XP increment of the failed credit was rolled back
        assert await _xp(db_session, level1_id) == (0, 0)
        assert await _xp(db_session, level2_id) == (100, 100)
        assert await _xp(db_session, root_id) == (25, 25)

    @pytest.mark.asyncio
    async def test_lock_failure_retries_whole_event(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
        monkeypatch,
    ):
        """Test a transient error leaves the distribution pending, uncredited."""
        root_id, level1_id, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        distribution = await distributor.create_distribution(level3_id, 1000)
        distribution_id = distribution.id
        original = distributor.referral_repo.add_reward
        calls = {"failed": False}

        async def _add_reward(referral_id, amount, rewarded_at):
            if not calls["failed"]:
                calls["failed"] = True
                raise OperationalError(
                    "UPDATE referrals", {}, Exception("database is locked")
                )
            return await original(referral_id, amount, rewarded_at)

        monkeypatch.setattr(distributor.referral_repo, "add_reward", _add_reward)

        with pytest.raises(OperationalError):
            await distributor.apply_distribution(distribution_id)
        await db_session.rollback()

        stored = await distributor.distribution_repo.get_for_update(
            distribution_id
        )
        assert stored.status == DistributionStatus.PENDING.value
        await db_session.commit()
        for user_id in (root_id, level1_id, level2_id):
            assert await _xp(db_session, user_id) == (0, 0)

        # Next attempt credits every ancestor in full
        result = await distributor.apply_distribution(distribution_id)

        assert result.total_distributed == 175
        assert result.failed == []
        assert await _xp(db_session, level2_id) == (100, 100)
        assert await _xp(db_session, level1_id) == (50, 50)
        assert await _xp(db_session, root_id) == (25, 25)


class TestDistributionOutbox:
    """Tests for apply_distribution, record_failure and process_pending."""

    @pytest.mark.asyncio
    async def test_apply_distribution_once(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test applying the same distribution twice credits once."""
        root_id, _, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        distribution = await distributor.create_distribution(level3_id, 1000)

        first = await distributor.apply_distribution(distribution.id)
        second = await distributor.apply_distribution(distribution.id)

        assert first.total_distributed == 175
        assert second is None
        assert await _xp(db_session, level2_id) == (100, 100)
        assert await _xp(db_session, root_id) == (25, 25)

        await db_session.refresh(distribution)
        assert distribution.status == DistributionStatus.APPLIED.value
        assert distribution.total_distributed == 175
        assert distribution.applied_at is not None

        earnings = await ReferralEarningRepository(
            db_session
        ).get_by_distribution(distribution.id)
        assert len(earnings) == 3

    @pytest.mark.asyncio
    async def test_apply_missing_distribution(
        self,
        db_session,  # pylint: disable=redefined-outer-name
    ):
        """Test unknown distribution id."""
        distributor = ReferralRewardDistributor(db_session)

        assert await distributor.apply_distribution(999999) is None

    @pytest.mark.asyncio
    async def test_record_failure_backoff_and_dead_letter(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        create_user_helper,  # pylint: disable=redefined-outer-name
        monkeypatch,
    ):
        """Test exponential backoff and dead letter after max retries."""
        monkeypatch.setattr(settings, "referral_distribution_max_retries", 3)
        user_id = (await create_user_helper()).id
        distributor = ReferralRewardDistributor(db_session)
        distribution = await distributor.create_distribution(user_id, 100)
        distribution_id = distribution.id
        base = settings.referral_distribution_base_delay_seconds

        for attempt in range(2):
            updated = await distributor.record_failure(distribution_id, "boom")
            assert updated.status == DistributionStatus.PENDING.value
            assert updated.attempt_count == attempt + 1
            assert updated.last_error == "boom"
            assert updated.next_retry_at - updated.last_attempt_at == timedelta(
                seconds=base * 2 ** attempt
            )

        updated = await distributor.record_failure(distribution_id, "boom")
        assert updated.status == DistributionStatus.DEAD_LETTER.value
        assert updated.next_retry_at is None

        assert await distributor.record_failure(distribution_id, "boom") is None
        dead = await distributor.get_dead_letters()
        assert [d.id for d in dead] == [distribution_id]

    @pytest.mark.asyncio
    async def test_process_pending(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
    ):
        """Test sweep applies due distributions."""
        root_id, _, level2_id, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        await distributor.create_distribution(level3_id, 1000)
        await distributor.create_distribution(level3_id, 1000)

        stats = await distributor.process_pending()

        assert stats == {
            "processed": 2,
            "applied": 2,
            "failed": 0,
            "dead_lettered": 0,
        }
        assert await _xp(db_session, level2_id) == (200, 200)
        assert await _xp(db_session, root_id) == (50, 50)

        again = await distributor.process_pending()
        assert again["processed"] == 0

    @pytest.mark.asyncio
    async def test_process_pending_records_failures(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
        monkeypatch,
    ):
        """Test failing distribution is rescheduled, not lost."""
        _, _, _, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        distribution = await distributor.create_distribution(level3_id, 1000)
        distribution_id = distribution.id

        async def _boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(distributor, "distribute", _boom)

        stats = await distributor.process_pending()

        assert stats["failed"] == 1
        assert stats["applied"] == 0

        stored = await distributor.distribution_repo.get_for_update(
            distribution_id
        )
        assert stored.status == DistributionStatus.PENDING.value
        assert stored.attempt_count == 1
        assert stored.next_retry_at is not None
        assert "boom" in stored.last_error

        # Not due yet
        assert (await distributor.process_pending())["processed"] == 0

    @pytest.mark.asyncio
    async def test_process_pending_dead_letters(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        test_referral_chain,  # pylint: disable=redefined-outer-name
        monkeypatch,
    ):
        """Test distribution dead-lettered when retries are exhausted."""
        monkeypatch.setattr(settings, "referral_distribution_max_retries", 1)
        _, _, _, level3_id = test_referral_chain
        distributor = ReferralRewardDistributor(db_session)
        await distributor.create_distribution(level3_id, 1000)

        async def _boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(distributor, "distribute", _boom)

        stats = await distributor.process_pending()

        assert stats["dead_lettered"] == 1
        assert len(await distributor.get_dead_letters()) == 1
