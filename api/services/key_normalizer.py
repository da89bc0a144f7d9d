"""
Key normalization for client deduplication.

Turns raw email and phone values into canonical matching keys. Two clients
are duplicates when they produce the same non-null key.
"""
import re
from typing import Optional

from api.services.merge_models import DedupKey

_NON_DIGIT = re.compile(r'\D')


def normalize_email(raw: Optional[str]) -> Optional[str]:
    """
    Normalize an email address for equality matching.

    Examples:
        >>> normalize_email("  A@X.com ")
        'a@x.com'
        >>> normalize_email("   ") is None
        True
    """
    if raw is None:
        return None
    email = raw.strip().lower()
    return email or None


def normalize_phone(raw: Optional[str], default_country_code: Optional[str] = None) -> Optional[str]:
    """
    Normalize a phone number to a digit string usable as a matching key.

    Args:
        raw: Raw phone number in any common format
        default_country_code: Calling code (digits only) applied to
            national-format numbers, or None

    Returns:
        Digit string, or None if no digits remain

    Examples:
        >>> normalize_phone("0664 123 4567", "43")
        '436641234567'
        >>> normalize_phone("+43 664 1234567", "43")
        '436641234567'
        >>> normalize_phone("0043 664 1234567")
        '436641234567'
        >>> normalize_phone("664 1234567")
        '6641234567'
    """
    if not raw:
        return None

    digits = _NON_DIGIT.sub('', raw)
    if not digits:
        return None

    # International prefix: remainder already carries a country code
    if digits.startswith("00"):
        return digits[2:] or None

    if default_country_code:
        if digits.startswith(default_country_code):
            return digits
        if digits.startswith("0"):
            return default_country_code + digits[1:]

    # No country code can be inferred; keep the digits as they are
    return digits


def dedup_key(kind: str, raw: Optional[str], default_country_code: Optional[str] = None) -> Optional[DedupKey]:
    """Build the DedupKey of the given kind for a raw value, or None if blank."""
    if kind == "email":
        value = normalize_email(raw)
    elif kind == "phone":
        value = normalize_phone(raw, default_country_code)
    else:
        raise ValueError(f"Unknown key kind: {kind}")

    if value is None:
        return None
    return DedupKey(kind=kind, value=value)
