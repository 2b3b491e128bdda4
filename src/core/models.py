"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any gateway-specific payload shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

INDIVIDUAL_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"


class IdentityKind(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


@dataclass(frozen=True)
class Identity:
    """Canonical WhatsApp identity (individual phone or group id)."""

    kind: IdentityKind
    user: str

    @property
    def jid(self) -> str:
        suffix = GROUP_SUFFIX if self.kind is IdentityKind.GROUP else INDIVIDUAL_SUFFIX
        return f"{self.user}{suffix}"

    @property
    def is_group(self) -> bool:
        return self.kind is IdentityKind.GROUP

    @property
    def is_empty(self) -> bool:
        return not self.user

    def __str__(self) -> str:
        return self.jid


class ActionKind(str, Enum):
    CREATE_TASK = "create_task"
    CREATE_CALENDAR_EVENT = "create_calendar_event"


class TriggerKind(str, Enum):
    """What fires a rule: a reaction emoji, or a hashtag or keyword in a plain message."""

    REACTION = "reaction"
    HASHTAG = "hashtag"
    KEYWORD = "keyword"


class RecordStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


class Outcome(str, Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    NO_RULE = "no_rule"
    THROTTLED = "throttled"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ReactionEvent:
    """A reaction as delivered by the transport, identities still raw."""

    message_id: str
    chat_id: str
    reactor_jid: str
    emoji: str
    original_message_content: str
    message_timestamp: datetime
    instance_id: str
    delivery_id: str
    from_me: bool = False
    original_sender_jid: Optional[str] = None


@dataclass(frozen=True)
class StoredMessage:
    """Plain message. Cached so later reactions can recover its content, and
    checked against hashtag and keyword rules.
    """

    instance_id: str
    message_id: str
    chat_id: str
    sender_jid: str
    content: str
    timestamp: datetime
    from_me: bool = False


@dataclass(frozen=True)
class TemporalExpression:
    """Date/time (or range) recognized in free text."""

    anchor_time: datetime
    raw_span: str
    resolved_start: datetime
    resolved_end: Optional[datetime]
    confidence: float
    corrected: bool = False
    all_day: bool = False
    location: Optional[str] = None

    @property
    def is_range(self) -> bool:
        return self.resolved_end is not None


@dataclass
class ActionRecord:
    """Ledger row guarding one delivery's side effect."""

    id: str
    source_delivery_id: str
    rule_id: str
    kind: ActionKind
    rendered_parameters: Dict[str, Any]
    status: RecordStatus
    created_at: datetime
    attempts: int = 1
    external_id: Optional[str] = None
    error: Optional[str] = None
    executed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Reservation:
    """Result of an atomic check-and-reserve against the ledger."""

    reserved: bool
    status: RecordStatus
    attempts: int

    @property
    def already_reserved(self) -> bool:
        return not self.reserved


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only record of one processing attempt."""

    delivery_id: str
    rule_id: Optional[str]
    outcome: Outcome
    created_at: datetime
    raw_span: Optional[str] = None
    resolved_start: Optional[datetime] = None
    resolved_end: Optional[datetime] = None
    confidence: Optional[float] = None
    detail: str = ""


@dataclass(frozen=True)
class ProcessingResult:
    """What ``ReactionProcessor.handle`` did with one event."""

    outcome: Outcome
    delivery_id: str
    rule_id: Optional[str] = None
    record_id: Optional[str] = None
    external_id: Optional[str] = None
    temporal: Optional[TemporalExpression] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
