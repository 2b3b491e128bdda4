"""Phone number and JID canonicalization (core domain)."""

from __future__ import annotations

import re
from typing import Iterable, Optional, Set

from core.config import NormalizerConfig
from core.models import GROUP_SUFFIX, Identity, IdentityKind

DEFAULT_CONFIG = NormalizerConfig()

_NON_DIGITS = re.compile(r"\D")
_NON_GROUP_CHARS = re.compile(r"[^0-9-]")


def _local_part(raw: str) -> str:
    """Return the user part of a JID, dropping any ``:device`` suffix."""

    local = raw.split("@", 1)[0]
    return local.split(":", 1)[0]


def _canonical_digits(digits: str, config: NormalizerConfig) -> str:
    country = config.country_code
    mobile_prefix = config.mobile_prefix

    if digits.startswith(mobile_prefix) and len(digits) >= 13:
        return digits
    if digits.startswith(country) and len(digits) == 12:
        # 52 + 10 national digits is missing the mobile marker WhatsApp expects.
        return f"{mobile_prefix}{digits[len(country):]}"
    if digits.startswith(config.north_american_code) and len(digits) == 11:
        return digits
    if len(digits) == 10:
        if digits[:2] in config.domestic_area_codes:
            return f"{mobile_prefix}{digits}"
        return f"{config.north_american_code}{digits}"
    return digits


def normalize(raw: Optional[str], config: NormalizerConfig = DEFAULT_CONFIG) -> Identity:
    """Map a raw phone number or JID to its canonical Identity.

    Never raises: unusable input yields an empty individual identity and the
    caller decides whether to reject it.
    """

    text = (raw or "").strip()
    if GROUP_SUFFIX in text.lower():
        group_id = _NON_GROUP_CHARS.sub("", _local_part(text)).strip("-")
        return Identity(IdentityKind.GROUP, group_id)

    digits = _NON_DIGITS.sub("", _local_part(text)).lstrip("0")
    if not digits:
        return Identity(IdentityKind.INDIVIDUAL, "")
    return Identity(IdentityKind.INDIVIDUAL, _canonical_digits(digits, config))


def to_jid(raw: Optional[str], config: NormalizerConfig = DEFAULT_CONFIG) -> str:
    """Shortcut returning the canonical JID string."""

    return normalize(raw, config).jid


def normalize_many(values: Iterable[str], config: NormalizerConfig = DEFAULT_CONFIG) -> Set[Identity]:
    """Normalize a list of configured identities, skipping empty ones."""

    identities: Set[Identity] = set()
    for value in values:
        identity = normalize(value, config)
        if not identity.is_empty:
            identities.add(identity)
    return identities


def same_identity(left: str, right: str, config: NormalizerConfig = DEFAULT_CONFIG) -> bool:
    left_id = normalize(left, config)
    return not left_id.is_empty and left_id == normalize(right, config)
