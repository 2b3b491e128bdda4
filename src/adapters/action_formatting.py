"""Shared action formatting helpers.

Used by the dry-run sink and the ``pending`` command so that an action reads
the same wherever it is printed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from core.models import ActionKind, ActionRecord

DIVIDER = "──────────────"
EXCERPT_CHARS = 200


def _when(params: Dict[str, Any]) -> Optional[str]:
    start = params.get("start")
    if not start:
        return None
    try:
        begin = datetime.fromisoformat(start)
    except ValueError:
        return str(start)
    if params.get("all_day"):
        return begin.strftime("%d-%m-%Y (all day)")
    label = begin.strftime("%H:%M %d-%m-%Y")
    end = params.get("end")
    if end:
        try:
            label = f"{label} → {datetime.fromisoformat(end).strftime('%H:%M')}"
        except ValueError:
            pass
    return label


def _excerpt(text: str, limit: int = EXCERPT_CHARS) -> str:
    text = " ".join((text or "").split())
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def format_action(kind: ActionKind, params: Dict[str, Any]) -> str:
    """Return a plain-text summary of a task or calendar event."""

    label = "Task" if kind is ActionKind.CREATE_TASK else "Event"
    lines = [
        f"**{label}:** {params.get('title') or '(untitled)'}",
        f"**Chat:**  {params.get('chat_jid', '')}",
        f"**By:**    {params.get('sender_jid', '')}",
    ]

    if kind is ActionKind.CREATE_TASK:
        lines.append(f"**Priority:** {params.get('priority', 'medium')}")
        if params.get("task_number"):
            lines.append(f"**Number:** {params['task_number']}")
        due = _when({"start": params.get("due"), "all_day": params.get("due_all_day")})
        if due:
            lines.append(f"**Due:**   {due}")
        if params.get("tags"):
            lines.append(f"**Tags:**  {', '.join(params['tags'])}")
    else:
        when = _when(params)
        if when:
            lines.append(f"**When:**  {when}")
        if params.get("location"):
            lines.append(f"**Where:** {params['location']}")
        if params.get("meet_invite"):
            lines.append("**Video:** meeting link requested")
        if params.get("confidence") is not None:
            lines.append(f"**Confidence:** {params['confidence']:.2f}")

    lines.append(DIVIDER)
    description = _excerpt(params.get("description", ""))
    if description:
        lines.extend(["", description, ""])
        lines.append(DIVIDER)
    return "\n".join(lines)


def format_record(record: ActionRecord) -> str:
    """One-line summary of a ledger record for reconciliation listings."""

    created = record.created_at.astimezone().strftime("%H:%M:%S %d-%m-%Y") if record.created_at else "?"
    title = record.rendered_parameters.get("title") or "(untitled)"
    line = (
        f"[{created}] {record.status.value:<8} {record.kind.value:<22} "
        f"rule={record.rule_id} attempts={record.attempts} delivery={record.source_delivery_id} | {title}"
    )
    if record.error:
        line += f" | error: {record.error}"
    return line
