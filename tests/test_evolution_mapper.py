from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import pytest

from adapters.evolution_mapper import (
    build_message,
    build_reaction_event,
    event_type,
    is_reaction,
    message_delivery_id,
)
from core.errors import MalformedInput
from core.models import StoredMessage

SENDER = "5215579188699@s.whatsapp.net"


def _reaction_payload(emoji: str = "✅", **data_overrides) -> dict:
    data = {
        "key": {"remoteJid": "120363@g.us", "fromMe": False, "id": "R1", "participant": SENDER},
        "message": {
            "reactionMessage": {
                "key": {"remoteJid": "120363@g.us", "fromMe": True, "id": "M1"},
                "text": emoji,
                "senderTimestampMs": 1715382000000,
            }
        },
        "messageTimestamp": 1715382000,
    }
    data.update(data_overrides)
    return {"event": "messages.upsert", "instance": "main", "data": data}


class FakeLookup:
    def __init__(self, message: Optional[StoredMessage] = None) -> None:
        self.message = message
        self.requests: list[tuple[str, str]] = []

    def get_message(self, instance_id: str, message_id: str) -> Optional[StoredMessage]:
        self.requests.append((instance_id, message_id))
        return self.message

    def save_message(self, message: StoredMessage) -> None:
        self.message = message


def test_event_type_normalization() -> None:
    for raw in ("messages.upsert", "MESSAGES_UPSERT", "messages-upsert"):
        assert event_type({"event": raw}) == "messages.upsert"
    assert event_type({}) == ""


def test_evolution_reaction_maps_to_event() -> None:
    event = build_reaction_event(_reaction_payload())

    assert event.message_id == "M1"
    assert event.chat_id == "120363@g.us"
    assert event.reactor_jid == SENDER
    assert event.emoji == "✅"
    assert event.instance_id == "main"
    assert event.message_timestamp == datetime(2024, 5, 10, 23, 0, tzinfo=timezone.utc)
    assert event.delivery_id.startswith("derived:")
    assert not event.from_me


def test_derived_delivery_id_is_stable_across_redeliveries() -> None:
    first = build_reaction_event(_reaction_payload())
    second = build_reaction_event(_reaction_payload())
    assert first.delivery_id == second.delivery_id


def test_explicit_delivery_id_wins() -> None:
    payload = _reaction_payload()
    payload["deliveryId"] = "evt-9"
    assert build_reaction_event(payload).delivery_id == "evt-9"


def test_reaction_removal_is_ignored() -> None:
    assert build_reaction_event(_reaction_payload(emoji="")) is None


def test_missing_target_is_malformed() -> None:
    payload = _reaction_payload()
    del payload["data"]["message"]["reactionMessage"]["key"]
    with pytest.raises(MalformedInput):
        build_reaction_event(payload)


def test_direct_chat_reactor_falls_back_to_remote_jid() -> None:
    payload = _reaction_payload(key={"remoteJid": SENDER, "fromMe": False, "id": "R2"})
    payload["data"]["message"]["reactionMessage"]["key"]["remoteJid"] = SENDER
    event = build_reaction_event(payload)
    assert event.reactor_jid == SENDER
    assert event.chat_id == SENDER


def test_lookup_enriches_content_and_sender() -> None:
    cached = StoredMessage(
        instance_id="main",
        message_id="M1",
        chat_id="120363@g.us",
        sender_jid="5215500000000@s.whatsapp.net",
        content="Nos vemos hoy 6:30 por meet",
        timestamp=datetime(2024, 5, 10, 22, 0, tzinfo=timezone.utc),
    )
    lookup = FakeLookup(cached)

    event = build_reaction_event(_reaction_payload(), lookup)

    assert lookup.requests == [("main", "M1")]
    assert event.original_message_content == "Nos vemos hoy 6:30 por meet"
    assert event.original_sender_jid == "5215500000000@s.whatsapp.net"
    assert event.message_timestamp == cached.timestamp


def test_flat_payload() -> None:
    payload = {
        "messageId": "M5",
        "chatId": "5579188699",
        "reactorJid": "525579188699",
        "emoji": "📅",
        "content": "Comemos mañana de 2-4 en la casa",
        "timestamp": "2024-05-10T17:00:00-06:00",
        "instanceId": "main",
        "deliveryId": "flat-1",
    }
    assert is_reaction(payload)

    event = build_reaction_event(payload)

    assert event.delivery_id == "flat-1"
    assert event.original_message_content == "Comemos mañana de 2-4 en la casa"
    assert event.message_timestamp == datetime(2024, 5, 10, 23, 0, tzinfo=timezone.utc)


def test_flat_payload_without_emoji_is_malformed() -> None:
    with pytest.raises(MalformedInput):
        build_reaction_event({"event": "messages.reaction", "messageId": "M1", "chatId": "c@g.us"})


def test_plain_message_is_not_a_reaction() -> None:
    payload = {
        "event": "MESSAGES_UPSERT",
        "instance": "main",
        "data": {
            "key": {"remoteJid": "120363@g.us", "fromMe": False, "id": "M1", "participant": SENDER},
            "message": {"extendedTextMessage": {"text": "Junta a las 5"}},
            "messageTimestamp": 1715382000,
        },
    }
    assert not is_reaction(payload)

    message = build_message(payload)

    assert message.message_id == "M1"
    assert message.sender_jid == SENDER
    assert message.content == "Junta a las 5"
    assert message.timestamp == datetime(2024, 5, 10, 23, 0, tzinfo=timezone.utc)


def test_build_message_ignores_reactions_and_other_events() -> None:
    assert build_message(_reaction_payload()) is None
    assert build_message({"event": "contacts.upsert", "data": {}}) is None


def _flat(timestamp) -> dict:
    return {
        "messageId": "M5",
        "chatId": "5579188699",
        "reactorJid": "525579188699",
        "emoji": "📅",
        "timestamp": timestamp,
        "deliveryId": "flat-1",
    }


def test_unusable_timestamps_fall_back_to_clock() -> None:
    now = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
    for value in ("nan", "inf", 1e20, -5, "not a date"):
        event = build_reaction_event(_flat(value), clock=lambda: now)
        assert event.message_timestamp == now, value


def test_millisecond_and_protobuf_timestamps() -> None:
    expected = datetime(2024, 5, 10, 23, 0, tzinfo=timezone.utc)
    assert build_reaction_event(_flat(1715382000000)).message_timestamp == expected
    assert build_reaction_event(_flat({"low": 1715382000, "high": 0})).message_timestamp == expected


def test_non_object_reaction_parts_are_malformed() -> None:
    with pytest.raises(MalformedInput):
        build_reaction_event(_reaction_payload(key="R1"))
    with pytest.raises(MalformedInput):
        build_reaction_event(_reaction_payload(message={"reactionMessage": "✅"}))
    payload = _reaction_payload()
    payload["data"]["message"]["reactionMessage"]["key"] = ["M1"]
    with pytest.raises(MalformedInput):
        build_reaction_event(payload)


def _plain(**data_overrides) -> dict:
    data = {
        "key": {"remoteJid": "120363@g.us", "fromMe": True, "id": "M1"},
        "message": {"conversation": "Revisar #tarea"},
        "messageTimestamp": 1715382000,
    }
    data.update(data_overrides)
    return {"event": "messages.upsert", "instance": "main", "sender": SENDER, "data": data}


def test_build_message_without_usable_key_is_ignored() -> None:
    assert build_message(_plain(key="M1")) is None
    assert build_message(_plain(key={"remoteJid": "120363@g.us"})) is None
    assert build_message(_plain(message="Revisar")).content == ""


def test_build_message_sender_and_from_me() -> None:
    message = build_message(_plain())

    assert message.sender_jid == SENDER
    assert message.from_me


def test_message_delivery_id() -> None:
    message = build_message(_plain())

    derived = message_delivery_id(_plain(), message)
    assert derived.startswith("derived:")
    assert derived == message_delivery_id(_plain(), build_message(_plain()))
    other = build_message(_plain(key={"remoteJid": "120363@g.us", "id": "M2"}))
    assert message_delivery_id(_plain(), other) != derived
    assert message_delivery_id({"deliveryId": "x-1"}, message) == "x-1"
