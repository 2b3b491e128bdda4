"""Ingest pipeline for incoming webhook payloads.

The pipeline enforces a strict order:
1) Classify the payload (plain message, reaction, anything else)
2) Cache plain messages so later reactions can recover their content, then
   run hashtag and keyword rules against them
3) Map reactions into core ReactionEvents, enriched from the cache
4) Hand the event to the core ReactionProcessor

Malformed reactions are logged and dropped here; ``SinkFailure`` from the
processor propagates so the transport can decide whether to redeliver.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from adapters.evolution_mapper import (
    build_message,
    build_reaction_event,
    event_type,
    is_reaction,
    message_delivery_id,
)
from core.errors import MalformedInput
from core.models import Outcome, ProcessingResult
from core.ports import MessageLookupPort
from core.processor import ReactionProcessor

LOGGER = logging.getLogger(__name__)


class WebhookPipeline:
    """Routes webhook payloads to the message cache or the reaction processor."""

    def __init__(
        self,
        processor: ReactionProcessor,
        messages: Optional[MessageLookupPort] = None,
        cache_messages: bool = True,
    ) -> None:
        self._processor = processor
        self._messages = messages
        self._cache_messages = cache_messages and messages is not None

    async def ingest(self, payload: Dict[str, Any]) -> Optional[ProcessingResult]:
        """Process one payload; ``None`` for ignored payloads and plain messages that match no rule."""

        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring non-object payload of type %s", type(payload).__name__)
            return None

        if is_reaction(payload):
            try:
                event = build_reaction_event(payload, self._messages)
            except MalformedInput as exc:
                LOGGER.warning("Dropping malformed reaction payload: %s", exc)
                return ProcessingResult(outcome=Outcome.MALFORMED, delivery_id="")
            if event is None:
                return None
            return await self._processor.handle(event)

        message = build_message(payload)
        if message is not None:
            if self._cache_messages:
                self._messages.save_message(message)
                LOGGER.debug("Cached message %s from %s", message.message_id, message.chat_id)
            result = await self._processor.handle_message(message, message_delivery_id(payload, message))
            return None if result.outcome is Outcome.NO_RULE else result

        LOGGER.debug("Ignoring %s payload", event_type(payload) or "untyped")
        return None
