"""Phone number normalization shared by contact sync and sender aliases."""

from __future__ import annotations

import re

DEFAULT_COUNTRY_CODE = "82"

_NON_DIAL = re.compile(r"[^\d+]")


def normalize_phone(phone: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return the canonical ``+<country><national>`` form of a phone number.

    Domestic numbers with a leading trunk zero are mapped onto the default
    country code. Idempotent: normalizing a normalized number is a no-op.
    """
    normalized = _NON_DIAL.sub("", phone)
    if not normalized:
        return normalized

    prefix = f"+{country_code}"
    if normalized.startswith(prefix):
        normalized = "0" + normalized[len(prefix):]
    if normalized.startswith("0"):
        normalized = prefix + normalized[1:]
    if not normalized.startswith("+"):
        normalized = "+" + normalized
    return normalized
