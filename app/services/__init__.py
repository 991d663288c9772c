"""
Services.

Business logic layer.
"""

# Referral Ledger
from app.services.referral_application import (
    ApplyCodeResult,
    ReferralApplication,
)
from app.services.referral_chain_builder import ChainLink, ReferralChainBuilder
from app.services.referral_reconciliation_service import (
    ReferralReconciliationService,
)
from app.services.referral_reward_calculator import (
    REFERRAL_DEPTH,
    REFERRAL_RATES,
    calculate_referral_reward,
)
from app.services.referral_reward_distributor import (
    DistributionResult,
    ReferralRewardDistributor,
)
from app.services.referral_service import ReferralService

# Core Services
from app.services.user_service import UserService

__all__ = [
    # Core
    "UserService",
    # Referral Ledger
    "ApplyCodeResult",
    "ChainLink",
    "DistributionResult",
    "REFERRAL_DEPTH",
    "REFERRAL_RATES",
    "ReferralApplication",
    "ReferralChainBuilder",
    "ReferralReconciliationService",
    "ReferralRewardDistributor",
    "ReferralService",
    "calculate_referral_reward",
]
