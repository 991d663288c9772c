"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from app.models.base import Base
from app.models.enums import (
    DistributionStatus,
    ReferralApplicationState,
    ReferralRejectReason,
    ReferralStatus,
)

# Referral Ledger Models
from app.models.referral import Referral
from app.models.referral_earning import ReferralEarning
from app.models.reward_distribution import RewardDistribution

# Core Models
from app.models.user import User

__all__ = [
    # Base
    "Base",
    # Enums
    "DistributionStatus",
    "ReferralApplicationState",
    "ReferralRejectReason",
    "ReferralStatus",
    # Core Models
    "User",
    # Referral Ledger Models
    "Referral",
    "ReferralEarning",
    "RewardDistribution",
]
