"""
Repositories.

Data access layer for all models.
"""

from app.repositories.base import BaseRepository

# Referral Ledger Repositories
from app.repositories.referral_earning_repository import (
    ReferralEarningRepository,
)
from app.repositories.referral_repository import ReferralRepository
from app.repositories.reward_distribution_repository import (
    RewardDistributionRepository,
)

# Core Repositories
from app.repositories.user_repository import UserRepository

__all__ = [
    # Base
    "BaseRepository",
    # Core
    "UserRepository",
    # Referral Ledger
    "ReferralRepository",
    "ReferralEarningRepository",
    "RewardDistributionRepository",
]
