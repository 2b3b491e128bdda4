from __future__ import annotations

import pytest

from core.config import NormalizerConfig
from core.identity import normalize, normalize_many, same_identity, to_jid
from core.models import IdentityKind

CANONICAL = "5215579188699@s.whatsapp.net"


@pytest.mark.parametrize(
    "raw",
    [
        "525579188699",
        "5215579188699",
        "+52 55 7918 8699",
        "5579188699",
        "5215579188699@s.whatsapp.net",
        "5215579188699:12@s.whatsapp.net",
        "(55) 7918-8699",
    ],
)
def test_mexican_mobile_forms_share_one_jid(raw: str) -> None:
    assert to_jid(raw) == CANONICAL


def test_ten_digits_outside_domestic_area_codes_get_north_american_prefix() -> None:
    assert to_jid("2125551234") == "12125551234@s.whatsapp.net"
    assert to_jid("+1 212 555 1234") == "12125551234@s.whatsapp.net"


def test_unknown_lengths_pass_through_unchanged() -> None:
    assert to_jid("+44 7700 900123") == "447700900123@s.whatsapp.net"


def test_group_jids_keep_their_id() -> None:
    identity = normalize("120363025246125888-1612345678@g.us")
    assert identity.kind is IdentityKind.GROUP
    assert identity.is_group
    assert identity.jid == "120363025246125888-1612345678@g.us"


def test_empty_and_non_numeric_input_yield_empty_identity() -> None:
    for raw in ("", None, "   ", "abc@s.whatsapp.net", "+"):
        identity = normalize(raw)
        assert identity.is_empty
        assert identity.kind is IdentityKind.INDIVIDUAL


def test_normalize_is_idempotent_on_canonical_output() -> None:
    for raw in ("525579188699", "5579188699", "2125551234", "447700900123", "1203630@g.us"):
        first = normalize(raw)
        assert normalize(first.jid) == first


def test_prefix_tables_come_from_config() -> None:
    config = NormalizerConfig(domestic_area_codes=("55", "56", "81", "33", "22"))
    assert to_jid("2221234567", config) == "5212221234567@s.whatsapp.net"
    assert to_jid("2221234567") == "12221234567@s.whatsapp.net"


def test_normalize_many_skips_empty_and_dedupes() -> None:
    identities = normalize_many(["5579188699", "+52 55 7918 8699", "", "nope"])
    assert {identity.jid for identity in identities} == {CANONICAL}


def test_same_identity() -> None:
    assert same_identity("525579188699", CANONICAL)
    assert not same_identity("", "")
    assert not same_identity("5579188699", "5579188698")
