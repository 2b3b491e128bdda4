"""Delivery-key helpers (core domain).

The transport normally supplies a stable ``deliveryId``. When it does not, we
derive one from the fields that identify the logical reaction so redeliveries
of the same payload collapse onto the same ledger row.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata

_VARIATION_SELECTORS = re.compile("[\ufe0e\ufe0f]")


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_emoji(emoji: str) -> str:
    """Return a comparable emoji form (NFC, no variation selectors)."""

    return _VARIATION_SELECTORS.sub("", unicodedata.normalize("NFC", emoji or "")).strip()


def normalize_for_fingerprint(text: str) -> str:
    """Normalize text for deterministic fingerprinting."""

    return _collapse_whitespace(text).lower()


def derive_delivery_id(
    instance_id: str,
    reaction_id: str,
    target_message_id: str,
    emoji: str,
    reactor_jid: str,
) -> str:
    """Return a deterministic delivery id for a reaction payload."""

    parts = [
        normalize_for_fingerprint(instance_id),
        reaction_id.strip(),
        target_message_id.strip(),
        normalize_emoji(emoji),
        normalize_for_fingerprint(reactor_jid),
    ]
    payload = "\n".join(parts)
    return "derived:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()
