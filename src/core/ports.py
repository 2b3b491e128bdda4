"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, rule, recognizer and sink
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from core.models import ActionRecord, AuditLogEntry, Reservation, StoredMessage
from core.rules_engine import Rule
from core.temporal import RawSpan


class LedgerPort(Protocol):
    """Idempotency ledger keyed by delivery id."""

    def reserve(self, record: ActionRecord, max_attempts: int) -> Reservation:
        """Atomically insert ``record`` as pending, or re-arm a failed one."""
        ...

    def mark_executed(self, delivery_id: str, external_id: str) -> None:
        ...

    def mark_failed(self, delivery_id: str, error: str) -> None:
        ...

    def get_record(self, delivery_id: str) -> Optional[ActionRecord]:
        ...

    def list_pending(self) -> List[ActionRecord]:
        """Records still pending or failed, for manual reconciliation."""
        ...

    def last_execution(self, rule_id: str) -> Optional[datetime]:
        """When the rule last produced an executed record, if ever."""
        ...

    def count_executions(self, rule_id: str, since: datetime) -> int:
        ...


class AuditPort(Protocol):
    """Append-only audit log."""

    def append(self, entry: AuditLogEntry) -> None:
        ...


class MessageLookupPort(Protocol):
    """Cache of plain messages used to enrich reactions."""

    def get_message(self, instance_id: str, message_id: str) -> Optional[StoredMessage]:
        ...

    def save_message(self, message: StoredMessage) -> None:
        ...


class RuleStorePort(Protocol):
    """Read-only access to the current rule table."""

    def snapshot(self) -> Sequence[Rule]:
        ...


class RecognizerPort(Protocol):
    """Locale-aware date/time phrase recognizer."""

    def recognize(self, text: str, language: str, anchor: datetime) -> List[RawSpan]:
        ...


class ActionSinkPort(Protocol):
    """Creates tasks and calendar events; raises ``SinkError`` on rejection."""

    async def create_task(self, params: Dict[str, Any]) -> str:
        ...

    async def create_calendar_event(self, params: Dict[str, Any]) -> str:
        ...
