"""
Referral reward calculator.

Decaying per-tier reward schedule.
"""

from decimal import ROUND_FLOOR, Decimal

from app.utils.exceptions import InvalidAmountError, InvalidTierError

# Referral system configuration
REFERRAL_DEPTH = 3
REFERRAL_RATES = {
    1: Decimal("0.10"),  # 10% for level 1
    2: Decimal("0.05"),  # 5% for level 2
    3: Decimal("0.025"),  # 2.5% for level 3
}


def get_referral_rate(level: int) -> Decimal:
    """
    Get reward rate for a tier.

    Tiers outside the schedule earn nothing.
    """
    return REFERRAL_RATES.get(level, Decimal("0"))


def calculate_referral_reward(level: int, base_amount: int) -> int:
    """
    Calculate reward of an ancestor for a point-earning event.

    Args:
        level: Tier of the ancestor (1 = direct referrer)
        base_amount: Points earned by the referred user

    Returns:
        Whole points, rounded down (0 means nothing to credit)

    Raises:
        InvalidTierError: Tier outside 1..REFERRAL_DEPTH
        InvalidAmountError: Negative or non-integer amount
    """
    if (
        isinstance(level, bool)
        or not isinstance(level, int)
        or level not in REFERRAL_RATES
    ):
        raise InvalidTierError(f"Invalid referral tier: {level!r}")

    if (
        isinstance(base_amount, bool)
        or not isinstance(base_amount, int)
        or base_amount < 0
    ):
        raise InvalidAmountError(f"Invalid reward base amount: {base_amount!r}")

    reward = Decimal(base_amount) * REFERRAL_RATES[level]
    return int(reward.to_integral_value(rounding=ROUND_FLOOR))
