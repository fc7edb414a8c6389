"""
Domain: M-Pesa phone numbers.

The gateway only accepts the international form without a plus sign:
254 followed by a 9-digit subscriber number starting with 7 or 1.

Accepted inputs (spaces, dashes and brackets are ignored):
- 0712345678 / 0112345678
- 712345678
- 254712345678
- +254712345678
"""

from __future__ import annotations

import re

from .errors import ValidationError

COUNTRY_CODE = "254"

_SEPARATORS = re.compile(r"[\s\-()]")
_SUBSCRIBER = re.compile(r"^[17]\d{8}$")


def normalize_phone(raw: str) -> str:
    """Return the canonical `254XXXXXXXXX` form or raise ValidationError."""

    digits = _SEPARATORS.sub("", raw or "")
    if digits.startswith("+"):
        digits = digits[1:]

    if digits.startswith(COUNTRY_CODE):
        subscriber = digits[len(COUNTRY_CODE):]
    elif digits.startswith("0"):
        subscriber = digits[1:]
    else:
        subscriber = digits

    if not _SUBSCRIBER.match(subscriber):
        raise ValidationError(f"Invalid M-Pesa phone number: {raw!r}")

    return COUNTRY_CODE + subscriber


__all__ = ["COUNTRY_CODE", "normalize_phone"]
