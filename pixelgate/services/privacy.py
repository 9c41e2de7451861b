"""
Privacy normalizer - one-way hashing of personal identifiers before they leave the gateway.

Each hashed field is trimmed, lower-cased and SHA-256 hashed to a hex digest.
Hashes are unsalted: the upstream API matches on the plain SHA-256 of the
normalized value, so a salt would make every identifier unmatchable.

Pure functions, no I/O. Malformed values are dropped, never raised on.
"""
import hashlib
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Upstream key -> accepted input names
HASHED_FIELDS: dict[str, tuple[str, ...]] = {
    "em": ("em", "email"),
    "ph": ("ph", "phone"),
    "fn": ("fn", "firstName", "first_name"),
    "ln": ("ln", "lastName", "last_name"),
    "ct": ("ct", "city"),
    "st": ("st", "region", "state"),
    "zp": ("zp", "postalCode", "postal_code", "zip"),
    "country": ("country",),
}

# Copied verbatim, never hashed
PASS_THROUGH_FIELDS: dict[str, tuple[str, ...]] = {
    "client_user_agent": ("client_user_agent", "userAgent", "user_agent"),
    "fbp": ("fbp",),
    "fbc": ("fbc",),
}

_NON_DIGITS = re.compile(r"\D")


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _as_text(value: Any) -> Optional[str]:
    """Accept strings and plain numbers (zip codes, phones); reject everything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    return None


def _normalize_value(field: str, value: Any) -> Optional[str]:
    text = _as_text(value)
    if text is None:
        return None
    text = text.strip().lower()
    if field == "ph":
        text = _NON_DIGITS.sub("", text)
    return text or None


def _first_present(raw: dict, names: tuple[str, ...]) -> Any:
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def normalize_identity_facts(raw: Any) -> dict[str, str]:
    """
    Turn raw personal fields into the hashed identity-fact set sent upstream.

    Absent, empty or malformed fields are omitted from the output; an empty
    string is never hashed because its digest would look like a real value.
    """
    if not isinstance(raw, dict):
        if raw is not None:
            logger.debug("Dropping non-object identity facts of type %s", type(raw).__name__)
        return {}

    normalized: dict[str, str] = {}

    for field, names in HASHED_FIELDS.items():
        value = _normalize_value(field, _first_present(raw, names))
        if value is not None:
            normalized[field] = sha256_hex(value)

    for field, names in PASS_THROUGH_FIELDS.items():
        value = _first_present(raw, names)
        if isinstance(value, str) and value.strip():
            normalized[field] = value

    return normalized
