"""Webhook-to-core mapping adapter.

Translates Evolution-API style webhook payloads (and a flat JSON shape used
by tests and simple relays) into core ``ReactionEvent`` and ``StoredMessage``
objects. Gateway-specific field names stay in this module.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import math
import re
from typing import Any, Callable, Dict, Optional

from core.dedup import derive_delivery_id
from core.errors import MalformedInput
from core.models import ReactionEvent, StoredMessage
from core.ports import MessageLookupPort

LOGGER = logging.getLogger(__name__)

REACTION_EVENTS = {"messages.reaction", "messages.upsert", "messages.update"}
MESSAGE_EVENTS = {"messages.upsert", "messages.set"}

# Seconds below this are treated as epoch seconds, above as milliseconds.
_MS_THRESHOLD = 10_000_000_000


def event_type(payload: Dict[str, Any]) -> str:
    """Normalize ``MESSAGES_UPSERT`` / ``messages-upsert`` to ``messages.upsert``."""

    raw = str(payload.get("event") or payload.get("type") or "")
    return re.sub(r"[-_]", ".", raw.strip().lower())


def _first(mapping: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_dict(value: Any, name: str) -> Dict[str, Any]:
    """Return a nested payload object; ``MalformedInput`` when it is not one."""

    if value in (None, ""):
        return {}
    if not isinstance(value, dict):
        raise MalformedInput(f"{name} is a {type(value).__name__}, expected an object")
    return value


def _data(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get("data")
    if isinstance(data, list):
        data = data[0] if data else {}
    if isinstance(data, dict):
        messages = data.get("messages")
        if isinstance(messages, list) and messages:
            data = messages[0]
        else:
            updates = data.get("updates")
            if isinstance(updates, list) and updates:
                data = updates[0]
    return data if isinstance(data, dict) else {}


def _to_datetime(value: Any, clock: Callable[[], datetime]) -> datetime:
    """Epoch seconds, epoch milliseconds or ISO-8601 to an aware UTC datetime."""

    if value in (None, ""):
        return clock()
    if isinstance(value, dict):
        # protobuf Long as serialized by some gateways
        value = value.get("low")
    try:
        number = float(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            LOGGER.debug("Unparseable timestamp %r, using current time", value)
            return clock()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if not math.isfinite(number) or number <= 0:
        LOGGER.debug("Unusable timestamp %r, using current time", value)
        return clock()
    if number > _MS_THRESHOLD:
        number /= 1000.0
    try:
        return datetime.fromtimestamp(number, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        LOGGER.debug("Timestamp %r is out of range, using current time", value)
        return clock()


def _message_content(message: Dict[str, Any]) -> str:
    if not isinstance(message, dict):
        return ""
    conversation = message.get("conversation")
    if isinstance(conversation, str) and conversation:
        return conversation
    for kind, field in (
        ("extendedTextMessage", "text"),
        ("imageMessage", "caption"),
        ("videoMessage", "caption"),
        ("documentMessage", "caption"),
    ):
        part = message.get(kind)
        if isinstance(part, dict) and isinstance(part.get(field), str) and part[field]:
            return part[field]
    return ""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_reaction(payload: Dict[str, Any]) -> bool:
    """True when the payload carries a reaction (either shape)."""

    kind = event_type(payload)
    data = _data(payload)
    if isinstance(data.get("message"), dict) and "reactionMessage" in data["message"]:
        return kind in REACTION_EVENTS or not kind
    if kind == "messages.reaction":
        return True
    # Flat shape: {"emoji": ..., "messageId": ...}
    return not kind and _first(payload, "emoji", "reaction") is not None


def build_message(
    payload: Dict[str, Any],
    clock: Callable[[], datetime] = _utcnow,
) -> Optional[StoredMessage]:
    """Map a plain ``messages.upsert`` payload; ``None`` when it is not one."""

    if event_type(payload) not in MESSAGE_EVENTS or is_reaction(payload):
        return None
    data = _data(payload)
    key = data.get("key")
    if not isinstance(key, dict):
        LOGGER.debug("Message payload without a usable key, ignoring")
        return None
    message_id = key.get("id")
    chat_id = key.get("remoteJid")
    if not message_id or not chat_id:
        return None
    return StoredMessage(
        instance_id=str(payload.get("instance") or payload.get("instanceId") or ""),
        message_id=str(message_id),
        chat_id=str(chat_id),
        sender_jid=str(key.get("participant") or payload.get("sender") or chat_id),
        content=_message_content(data.get("message")),
        timestamp=_to_datetime(data.get("messageTimestamp"), clock),
        from_me=bool(key.get("fromMe", False)),
    )


def message_delivery_id(payload: Dict[str, Any], message: StoredMessage) -> str:
    """Transport delivery id of a plain message, or one derived from its identity."""

    delivery_id = _first(payload, "deliveryId", "delivery_id")
    if delivery_id:
        return str(delivery_id)
    return derive_delivery_id(message.instance_id, "message", message.message_id, "", message.sender_jid)


def _evolution_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _data(payload)
    key = _as_dict(data.get("key"), "key")
    reaction = _as_dict(data["message"].get("reactionMessage"), "reactionMessage")
    target = _as_dict(reaction.get("key"), "reactionMessage.key")
    return {
        "reaction_id": key.get("id") or "",
        "message_id": target.get("id"),
        "chat_id": target.get("remoteJid") or key.get("remoteJid"),
        "reactor_jid": key.get("participant") or payload.get("sender") or key.get("remoteJid"),
        "emoji": reaction.get("text"),
        "from_me": bool(key.get("fromMe", False)),
        "timestamp": reaction.get("senderTimestampMs") or data.get("messageTimestamp"),
        "content": None,
    }


def _flat_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "reaction_id": _first(payload, "reactionId", "reaction_id") or "",
        "message_id": _first(payload, "messageId", "message_id", "targetMessageId"),
        "chat_id": _first(payload, "chatId", "chat_id", "remoteJid"),
        "reactor_jid": _first(payload, "reactorJid", "reactor_jid", "reactor", "sender"),
        "emoji": _first(payload, "emoji", "reaction"),
        "from_me": bool(_first(payload, "fromMe", "from_me") or False),
        "timestamp": _first(payload, "messageTimestamp", "message_timestamp", "timestamp"),
        "content": _first(payload, "content", "originalMessageContent", "original_message_content"),
    }


def build_reaction_event(
    payload: Dict[str, Any],
    lookup: Optional[MessageLookupPort] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> Optional[ReactionEvent]:
    """Build a ``ReactionEvent`` from a webhook payload.

    Returns ``None`` for reaction removals (empty emoji). Raises
    ``MalformedInput`` when required identifiers are missing. When a message
    lookup is given, the reacted-to message's content, author and timestamp
    are taken from the cache.
    """

    data = _data(payload)
    if isinstance(data.get("message"), dict) and "reactionMessage" in data["message"]:
        fields = _evolution_fields(payload)
    else:
        fields = _flat_fields(payload)

    emoji = fields["emoji"]
    if emoji is None:
        raise MalformedInput("reaction payload has no emoji")
    if emoji == "":
        LOGGER.debug("Reaction removed on %s, ignoring", fields["message_id"])
        return None
    if not fields["message_id"]:
        raise MalformedInput("reaction payload has no target message id")
    if not fields["chat_id"]:
        raise MalformedInput("reaction payload has no chat id")
    if not fields["reactor_jid"]:
        raise MalformedInput("reaction payload has no reactor")

    instance_id = str(_first(payload, "instance", "instanceId", "instance_id") or "")
    message_id = str(fields["message_id"])
    reactor_jid = str(fields["reactor_jid"])

    delivery_id = _first(payload, "deliveryId", "delivery_id")
    if not delivery_id:
        delivery_id = derive_delivery_id(
            instance_id,
            str(fields["reaction_id"]),
            message_id,
            str(emoji),
            reactor_jid,
        )

    content = fields["content"] or ""
    original_sender = _first(payload, "originalSenderJid", "original_sender_jid")
    timestamp = _to_datetime(fields["timestamp"], clock)

    stored = lookup.get_message(instance_id, message_id) if lookup is not None else None
    if stored is not None:
        content = content or stored.content
        original_sender = original_sender or stored.sender_jid
        if stored.timestamp is not None:
            timestamp = stored.timestamp
    elif lookup is not None and not content:
        LOGGER.info("Reacted message %s not cached; content is empty", message_id)

    return ReactionEvent(
        message_id=message_id,
        chat_id=str(fields["chat_id"]),
        reactor_jid=reactor_jid,
        emoji=str(emoji),
        original_message_content=str(content),
        message_timestamp=timestamp,
        instance_id=instance_id,
        delivery_id=str(delivery_id),
        from_me=fields["from_me"],
        original_sender_jid=str(original_sender) if original_sender else None,
    )
