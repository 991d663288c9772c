"""
Referral exceptions.

Every failure carries a stable reason code so callers can map it
to an external response without knowing ledger rules.
"""

from app.models.enums import ReferralRejectReason


class ReferralError(Exception):
    """Base error of the referral ledger."""

    reason: ReferralRejectReason = ReferralRejectReason.TRANSACTION_ABORTED
    default_message = "Referral operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class MalformedCodeError(ReferralError):
    """Referral code is not 8 hexadecimal characters."""

    reason = ReferralRejectReason.MALFORMED_CODE
    default_message = "Invalid referral code format"


class CodeNotFoundError(ReferralError):
    """No user owns the referral code."""

    reason = ReferralRejectReason.CODE_NOT_FOUND
    default_message = "Referral code not found"


class SelfReferralError(ReferralError):
    """User tried to use their own referral code."""

    reason = ReferralRejectReason.SELF_REFERRAL
    default_message = "Cannot use your own referral code"


class CycleDetectedError(ReferralError):
    """Binding would make a user their own ancestor."""

    reason = ReferralRejectReason.CYCLE_DETECTED
    default_message = "Circular referral chain detected"


class AlreadyBoundError(ReferralError):
    """User already has a referrer."""

    reason = ReferralRejectReason.ALREADY_BOUND
    default_message = "You have already used a referral code"


class ParticipantNotFoundError(ReferralError):
    """User does not exist."""

    reason = ReferralRejectReason.PARTICIPANT_NOT_FOUND
    default_message = "User not found"


class UniquenessExhaustedError(ReferralError):
    """No unique referral code found within the allowed attempts."""

    reason = ReferralRejectReason.UNIQUENESS_EXHAUSTED
    default_message = "Failed to generate unique referral code"


class InvalidTierError(ReferralError, ValueError):
    """Reward requested for a tier outside the schedule."""

    reason = ReferralRejectReason.INVALID_TIER
    default_message = "Invalid referral level"


class InvalidAmountError(ReferralError, ValueError):
    """Reward requested for a negative or non-integer amount."""

    reason = ReferralRejectReason.INVALID_AMOUNT
    default_message = "Invalid XP amount"


class TransactionAbortedError(ReferralError):
    """Concurrent conflicting write aborted the transaction."""

    reason = ReferralRejectReason.TRANSACTION_ABORTED
    default_message = "Transaction aborted by a concurrent update"
