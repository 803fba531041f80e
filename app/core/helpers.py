"""
Helper functions for common infrastructure operations.

These utilities are domain-agnostic: they know nothing about wallets or
messages, only about the shapes of identifiers that flow through the system.

Usage:
    from core.helpers import generate_reference, normalize_phone_number

    normalize_phone_number("+91 93733-55199")  # "919373355199"
    generate_reference("RC")                   # "RC-3F9A0C1E2B4D5A6F7E8D"
"""

from __future__ import annotations

import re
import uuid

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_number(value: str | None) -> str:
    """
    Reduce a phone number to its digits.

    Providers report recipients as "919373355199" while send requests often
    carry "+91 93733 55199"; comparing digits only makes them equal.

    Args:
        value: Raw phone number (may be None)

    Returns:
        Digits-only string, empty if value is None or has no digits
    """
    if not value:
        return ""
    return _NON_DIGITS.sub("", str(value))


def generate_reference(prefix: str, length: int = 20) -> str:
    """
    Generate a unique, externally visible reference.

    Args:
        prefix: Short uppercase prefix identifying the reference kind
        length: Number of hex characters after the prefix (max 32)

    Returns:
        Reference like "RC-3F9A0C1E2B4D5A6F7E8D"
    """
    return f"{prefix}-{uuid.uuid4().hex[:length].upper()}"
