"""Action template rendering (core domain).

Templates use ``{{name}}`` placeholders. Rendering never raises: unknown
placeholders and missing context values both render as an empty string.
"""

from __future__ import annotations

import itertools
import re
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

KNOWN_PLACEHOLDERS = frozenset(
    {
        "content",
        "emoji",
        "reaction",
        "hashtags",
        "timestamp",
        "messageId",
        "chatId",
        "sender",
        "senderJid",
        "taskNumber",
    }
)

_counter_lock = threading.Lock()
_counter = itertools.count(int(time.time() * 1000) % 1_000_000)


def new_task_number() -> str:
    """Return the next ``TASK-NNNNNN`` identifier for this process."""

    with _counter_lock:
        value = next(_counter) % 1_000_000
    return f"TASK-{value:06d}"


def sender_from_jid(sender_jid: Optional[str]) -> str:
    if not sender_jid:
        return ""
    return sender_jid.split("@", 1)[0]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def render(
    template: Optional[str],
    context: Mapping[str, Any],
    task_number: Callable[[], str] = new_task_number,
) -> str:
    """Substitute placeholders in ``template`` from ``context``."""

    if not template:
        return ""

    cache: Dict[str, str] = {}

    def _resolve(match: re.Match) -> str:
        name = match.group(1)
        if name not in KNOWN_PLACEHOLDERS:
            return ""
        if name in cache:
            return cache[name]
        if name == "sender":
            value = sender_from_jid(_as_text(context.get("senderJid")))
        elif name == "taskNumber":
            value = task_number()
        else:
            value = _as_text(context.get(name))
        cache[name] = value
        return value

    return PLACEHOLDER_RE.sub(_resolve, template)


def render_fields(
    templates: Mapping[str, Any],
    context: Mapping[str, Any],
    task_number: Callable[[], str] = new_task_number,
) -> Dict[str, str]:
    """Render a field -> template map, sharing one task number across fields."""

    number: Optional[str] = None

    def _shared_number() -> str:
        nonlocal number
        if number is None:
            number = task_number()
        return number

    return {
        name: render(_as_text(value), context, task_number=_shared_number)
        for name, value in templates.items()
    }
