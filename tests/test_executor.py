from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from core.config import ExecutorConfig
from core.errors import SinkError
from core.executor import ActionExecutor
from core.models import ActionKind


class ScriptedSink:
    """Replays a list of outcomes: a string id, an exception, or "hang"."""

    def __init__(self, script: List[Any]) -> None:
        self._script = list(script)
        self.calls: list[tuple[str, Dict[str, Any]]] = []

    async def _next(self, name: str, params: Dict[str, Any]) -> str:
        self.calls.append((name, params))
        step = self._script.pop(0)
        if step == "hang":
            await asyncio.sleep(10)
        if isinstance(step, Exception):
            raise step
        return step

    async def create_task(self, params: Dict[str, Any]) -> str:
        return await self._next("task", params)

    async def create_calendar_event(self, params: Dict[str, Any]) -> str:
        return await self._next("event", params)


def test_dispatches_by_kind() -> None:
    sink = ScriptedSink(["t-1", "e-1"])
    executor = ActionExecutor(sink)
    assert asyncio.run(executor.execute(ActionKind.CREATE_TASK, {"title": "a"})) == "t-1"
    assert asyncio.run(executor.execute(ActionKind.CREATE_CALENDAR_EVENT, {"title": "b"})) == "e-1"
    assert [name for name, _ in sink.calls] == ["task", "event"]


def test_transient_error_is_retried_once() -> None:
    sink = ScriptedSink([SinkError("503"), "t-2"])
    executor = ActionExecutor(sink, ExecutorConfig(retries=1))
    assert asyncio.run(executor.execute(ActionKind.CREATE_TASK, {})) == "t-2"
    assert len(sink.calls) == 2


def test_permanent_error_is_not_retried() -> None:
    sink = ScriptedSink([SinkError("422", transient=False), "unused"])
    executor = ActionExecutor(sink, ExecutorConfig(retries=1))
    with pytest.raises(SinkError) as excinfo:
        asyncio.run(executor.execute(ActionKind.CREATE_TASK, {}))
    assert not excinfo.value.transient
    assert len(sink.calls) == 1


def test_timeouts_exhaust_retries() -> None:
    sink = ScriptedSink(["hang", "hang"])
    executor = ActionExecutor(sink, ExecutorConfig(timeout_seconds=0.01, retries=1))
    with pytest.raises(SinkError) as excinfo:
        asyncio.run(executor.execute(ActionKind.CREATE_CALENDAR_EVENT, {}))
    assert excinfo.value.transient
    assert "timed out" in str(excinfo.value)
    assert len(sink.calls) == 2


def test_negative_retries_still_make_one_attempt() -> None:
    sink = ScriptedSink([SinkError("503")])
    executor = ActionExecutor(sink, ExecutorConfig(retries=-1))
    with pytest.raises(SinkError) as excinfo:
        asyncio.run(executor.execute(ActionKind.CREATE_TASK, {}))
    assert str(excinfo.value) == "503"
    assert len(sink.calls) == 1

    sink = ScriptedSink(["t-3"])
    assert asyncio.run(ActionExecutor(sink, ExecutorConfig(retries=-3)).execute(ActionKind.CREATE_TASK, {})) == "t-3"
