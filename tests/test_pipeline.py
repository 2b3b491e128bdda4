from __future__ import annotations

import asyncio
from typing import Optional

from core.models import Outcome, ProcessingResult, ReactionEvent, StoredMessage
from pipeline import WebhookPipeline

SENDER = "5215579188699@s.whatsapp.net"


class FakeProcessor:
    def __init__(self, message_outcome: Outcome = Outcome.NO_RULE) -> None:
        self.events: list[ReactionEvent] = []
        self.messages: list[tuple[StoredMessage, str]] = []
        self.message_outcome = message_outcome

    async def handle(self, event: ReactionEvent) -> ProcessingResult:
        self.events.append(event)
        return ProcessingResult(outcome=Outcome.EXECUTED, delivery_id=event.delivery_id)

    async def handle_message(self, message: StoredMessage, delivery_id: str) -> ProcessingResult:
        self.messages.append((message, delivery_id))
        return ProcessingResult(outcome=self.message_outcome, delivery_id=delivery_id)


class FakeMessages:
    def __init__(self) -> None:
        self.saved: dict[tuple[str, str], StoredMessage] = {}

    def get_message(self, instance_id: str, message_id: str) -> Optional[StoredMessage]:
        return self.saved.get((instance_id, message_id))

    def save_message(self, message: StoredMessage) -> None:
        self.saved[(message.instance_id, message.message_id)] = message


def _message_payload(text: str) -> dict:
    return {
        "event": "messages.upsert",
        "instance": "main",
        "data": {
            "key": {"remoteJid": "120363@g.us", "fromMe": False, "id": "M1", "participant": SENDER},
            "message": {"conversation": text},
            "messageTimestamp": 1715382000,
        },
    }


def _reaction_payload(emoji: str = "📅") -> dict:
    return {
        "event": "messages.upsert",
        "instance": "main",
        "data": {
            "key": {"remoteJid": "120363@g.us", "fromMe": True, "id": "R1", "participant": SENDER},
            "message": {"reactionMessage": {"key": {"remoteJid": "120363@g.us", "id": "M1"}, "text": emoji}},
            "messageTimestamp": 1715385600,
        },
    }


def test_message_then_reaction_is_enriched() -> None:
    processor, messages = FakeProcessor(), FakeMessages()
    pipeline = WebhookPipeline(processor, messages)

    assert asyncio.run(pipeline.ingest(_message_payload("Nos vemos hoy 6:30 por meet"))) is None
    result = asyncio.run(pipeline.ingest(_reaction_payload()))

    assert result.outcome is Outcome.EXECUTED
    [event] = processor.events
    assert event.original_message_content == "Nos vemos hoy 6:30 por meet"
    assert event.original_sender_jid == SENDER
    assert event.from_me


def test_cache_can_be_disabled() -> None:
    processor, messages = FakeProcessor(), FakeMessages()
    pipeline = WebhookPipeline(processor, messages, cache_messages=False)

    asyncio.run(pipeline.ingest(_message_payload("hola")))

    assert messages.saved == {}


def test_reaction_removal_and_unknown_events_produce_nothing() -> None:
    processor = FakeProcessor()
    pipeline = WebhookPipeline(processor, FakeMessages())

    assert asyncio.run(pipeline.ingest(_reaction_payload(emoji=""))) is None
    assert asyncio.run(pipeline.ingest({"event": "contacts.update", "data": {}})) is None
    assert asyncio.run(pipeline.ingest(["not", "a", "dict"])) is None
    assert processor.events == []


def test_malformed_reaction_is_reported() -> None:
    processor = FakeProcessor()
    pipeline = WebhookPipeline(processor, FakeMessages())
    payload = _reaction_payload()
    del payload["data"]["message"]["reactionMessage"]["key"]["id"]

    result = asyncio.run(pipeline.ingest(payload))

    assert result.outcome is Outcome.MALFORMED
    assert processor.events == []


def test_reaction_with_non_object_key_is_malformed() -> None:
    processor = FakeProcessor()
    pipeline = WebhookPipeline(processor, FakeMessages())
    payload = _reaction_payload()
    payload["data"]["key"] = "R1"

    result = asyncio.run(pipeline.ingest(payload))

    assert result.outcome is Outcome.MALFORMED
    assert processor.events == []


def test_reaction_with_unusable_timestamp_is_still_processed() -> None:
    processor = FakeProcessor()
    pipeline = WebhookPipeline(processor, FakeMessages())
    payload = _reaction_payload()
    payload["data"]["messageTimestamp"] = float("nan")

    result = asyncio.run(pipeline.ingest(payload))

    assert result.outcome is Outcome.EXECUTED
    [event] = processor.events
    assert event.message_timestamp.tzinfo is not None


def test_message_matching_a_rule_returns_its_result() -> None:
    processor, messages = FakeProcessor(message_outcome=Outcome.EXECUTED), FakeMessages()
    pipeline = WebhookPipeline(processor, messages)

    result = asyncio.run(pipeline.ingest(_message_payload("Revisar contrato #tarea")))

    assert result.outcome is Outcome.EXECUTED
    [(message, delivery_id)] = processor.messages
    assert message.content == "Revisar contrato #tarea"
    assert delivery_id == result.delivery_id
    assert delivery_id.startswith("derived:")
    assert ("main", "M1") in messages.saved
