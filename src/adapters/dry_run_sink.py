"""Dry-run action sink.

Logs a human-readable summary of each action instead of calling a service.
Useful for trying rules against recorded webhook traffic.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple
import uuid

from adapters.action_formatting import format_action
from core.models import ActionKind

LOGGER = logging.getLogger(__name__)


class DryRunSink:
    """ActionSinkPort implementation that only logs."""

    def __init__(self) -> None:
        self.created: List[Tuple[ActionKind, Dict[str, Any]]] = []

    def _create(self, kind: ActionKind, params: Dict[str, Any]) -> str:
        external_id = f"dry-{uuid.uuid4().hex[:12]}"
        self.created.append((kind, params))
        LOGGER.info("Dry run %s (%s)\n%s", kind.value, external_id, format_action(kind, params))
        return external_id

    async def create_task(self, params: Dict[str, Any]) -> str:
        return self._create(ActionKind.CREATE_TASK, params)

    async def create_calendar_event(self, params: Dict[str, Any]) -> str:
        return self._create(ActionKind.CREATE_CALENDAR_EVENT, params)
