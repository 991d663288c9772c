"""
Background tasks.

Dramatiq task definitions.
"""

from jobs.tasks.referral_reconciliation import (
    perform_referral_reconciliation,
)
from jobs.tasks.referral_rewards import (
    distribute_referral_rewards,
    process_pending_reward_distributions,
)

__all__ = [
    "distribute_referral_rewards",
    "process_pending_reward_distributions",
    "perform_referral_reconciliation",
]
