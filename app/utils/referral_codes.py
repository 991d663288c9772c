"""Referral code generation and validation."""

import re
import secrets

REFERRAL_CODE_LENGTH = 8

_REFERRAL_CODE_RE = re.compile(r"^[0-9A-F]{8}$", re.IGNORECASE)


def generate_referral_code() -> str:
    """
    Generate a random referral code.

    Codes are 8 uppercase hex characters (4 random bytes). They do not
    depend on the user, so uniqueness must be checked by the caller.

    Returns:
        Referral code
    """
    return secrets.token_hex(REFERRAL_CODE_LENGTH // 2).upper()


def is_well_formed_referral_code(code: object) -> bool:
    """
    Validate referral code syntax.

    Args:
        code: Supplied code

    Returns:
        True if code is exactly 8 hex characters (any case)
    """
    if not code or not isinstance(code, str):
        return False
    return bool(_REFERRAL_CODE_RE.fullmatch(code))


def normalize_referral_code(code: str) -> str:
    """Normalize code for storage and lookup."""
    return code.strip().upper()
