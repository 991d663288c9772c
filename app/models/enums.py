"""
Database enums.

Centralized enums used across database models and services.
"""

from enum import StrEnum


class ReferralStatus(StrEnum):
    """Referral edge status values."""

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


class DistributionStatus(StrEnum):
    """Reward distribution (outbox) status values."""

    PENDING = "pending"
    APPLIED = "applied"
    DEAD_LETTER = "dead_letter"


class ReferralApplicationState(StrEnum):
    """States of the referral code application workflow."""

    UNBOUND = "unbound"
    VALIDATING = "validating"
    CHAIN_BUILDING = "chain_building"
    PERSISTING = "persisting"
    BOUND = "bound"
    REJECTED = "rejected"


class ReferralRejectReason(StrEnum):
    """Stable reason codes for referral failures."""

    MALFORMED_CODE = "malformed_code"
    CODE_NOT_FOUND = "code_not_found"
    SELF_REFERRAL = "self_referral"
    CYCLE_DETECTED = "cycle_detected"
    ALREADY_BOUND = "already_bound"
    PARTICIPANT_NOT_FOUND = "participant_not_found"
    UNIQUENESS_EXHAUSTED = "uniqueness_exhausted"
    INVALID_TIER = "invalid_tier"
    INVALID_AMOUNT = "invalid_amount"
    TRANSACTION_ABORTED = "transaction_aborted"
