"""Side-effect execution for matched rules (core domain)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from core.config import ExecutorConfig
from core.errors import SinkError
from core.models import ActionKind
from core.ports import ActionSinkPort

LOGGER = logging.getLogger(__name__)

SinkCall = Callable[[Dict[str, Any]], Awaitable[str]]


class ActionExecutor:
    """Dispatches one action kind to the sink with a timeout and bounded retry."""

    def __init__(self, sink: ActionSinkPort, config: Optional[ExecutorConfig] = None) -> None:
        self._sink = sink
        self._config = config or ExecutorConfig()
        self._dispatch: Dict[ActionKind, SinkCall] = {
            ActionKind.CREATE_TASK: sink.create_task,
            ActionKind.CREATE_CALENDAR_EVENT: sink.create_calendar_event,
        }

    async def execute(self, kind: ActionKind, params: Dict[str, Any]) -> str:
        """Perform the side effect and return the external id.

        Transient errors and timeouts are retried ``config.retries`` times;
        permanent ``SinkError``s are raised immediately.
        """

        call = self._dispatch[kind]
        attempts = max(1, self._config.retries + 1)
        last_error = SinkError(f"{kind.value} was not attempted", transient=True)

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(call(params), timeout=self._config.timeout_seconds)
            except asyncio.TimeoutError:
                last_error = SinkError(
                    f"{kind.value} timed out after {self._config.timeout_seconds}s",
                    transient=True,
                )
            except SinkError as exc:
                if not exc.transient:
                    raise
                last_error = exc

            if attempt < attempts:
                LOGGER.warning("%s attempt %s/%s failed: %s", kind.value, attempt, attempts, last_error)

        raise last_error
