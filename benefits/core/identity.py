"""
Canonical subscriber identity normalization.

Every external user identity (webhook client_reference_id, query/body fields,
seed files) passes through normalize_subscriber_id before it is used as a key.
"""

import unicodedata
from typing import Any

from benefits.core.errors import ValidationError


def normalize_subscriber_id(raw: Any, *, field: str = "subscriberId") -> str:
    """
    Return the canonical form of an external user identity.

    Control characters (newlines, tabs, NUL, ...) are removed anywhere in the
    value and surrounding whitespace is stripped.

    Raises:
        ValidationError: If the value is not a string or normalizes to empty
    """
    if not isinstance(raw, str):
        raise ValidationError(f"{field} must be a string")
    cleaned = "".join(ch for ch in raw if unicodedata.category(ch) != "Cc").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    return cleaned


def require_text(raw: Any, *, field: str) -> str:
    """Validate a required free-form text field (plan refs, claim names)."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError(f"{field} is required")
    return raw.strip()
