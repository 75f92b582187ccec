"""Pickup code utilities."""

import secrets

from app.core.config import SETTINGS


def generate_pickup_code(length: int | None = None) -> str:
    """Generate a numeric one-time pickup code.

    Args:
        length (int | None):
            Number of digits. Defaults to ``SETTINGS.pickup_code_length``.

    Returns:
        str: A zero-padded code drawn from a CSPRNG.
    """
    digits: int = length or SETTINGS.pickup_code_length
    return f"{secrets.randbelow(10**digits):0{digits}d}"


def pickup_code_matches(expected: str | None, given: str) -> bool:
    """Compare a presented code with the issued one in constant time.

    Args:
        expected (str | None): The code stored on the claim, if any.
        given (str): The code presented at pickup.

    Returns:
        bool: True only when a code was issued and both codes are equal.
    """
    if expected is None:
        return False
    return secrets.compare_digest(expected.encode(), given.strip().encode())
