"""Utility functions for generating IDs."""

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_lowercase


def to_base36(number: int) -> str:
    """Convert a non-negative number to its base36 representation."""
    if number < 0:
        raise ValueError("Only non-negative numbers have a base36 form here")
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def generate_account_id(suffix_length: int = 6) -> str:
    """Generate a billing account id such as ``A-lx3k9q2m-4hz81c``.

    The middle part is the creation time in milliseconds (base36), so ids
    sort roughly by creation; the suffix is random.
    """
    timestamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(suffix_length))
    return f"A-{timestamp}-{suffix}"
