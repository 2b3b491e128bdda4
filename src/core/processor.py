"""Core reaction processing pipeline.

This module is integration-agnostic. It only relies on ports for rules,
ledger, audit and the action sink, enabling other transports or storage
backends without changes here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import re
from typing import Any, Callable, Dict, Optional
import uuid
from zoneinfo import ZoneInfo

from core.config import AnalysisConfig, AuditConfig, ExecutorConfig, NormalizerConfig
from core.errors import MalformedInput, SinkError, SinkFailure
from core.executor import ActionExecutor
from core.identity import DEFAULT_CONFIG, normalize
from core.models import (
    ActionKind,
    ActionRecord,
    AuditLogEntry,
    Identity,
    Outcome,
    ProcessingResult,
    ReactionEvent,
    RecordStatus,
    StoredMessage,
    TemporalExpression,
)
from core.ports import AuditPort, LedgerPort, RuleStorePort
from core.rules_engine import Rule, match_message_rule, match_rule
from core.temporal import TemporalExtractor, detect_language, suggest_duration
from core.templates import new_task_number, render_fields
from core.text_analysis import (
    extract_duration,
    extract_hashtags,
    extract_priority,
    extract_tags,
    wants_virtual_meeting,
)

LOGGER = logging.getLogger(__name__)

TITLE_CHARS = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def title_from_content(content: str, fallback: str) -> str:
    """First sentence of the message, clipped for use as a title."""

    first = re.split(r"[.!?\n]", content or "", maxsplit=1)[0].strip()
    if not first:
        return fallback
    if len(first) > TITLE_CHARS:
        return first[: TITLE_CHARS - 3].rstrip() + "..."
    return first


@dataclass(frozen=True)
class _Trigger:
    """Validated source of one action: a reaction or a plain message."""

    delivery_id: str
    instance_id: str
    message_id: str
    chat: Identity
    sender: Identity
    content: str
    timestamp: datetime
    emoji: str = ""
    original_sender: Optional[Identity] = None


class ReactionProcessor:
    """Orchestrates normalization, matching, extraction, dedup and execution."""

    def __init__(
        self,
        rule_store: RuleStorePort,
        ledger: LedgerPort,
        audit: AuditPort,
        executor: ActionExecutor,
        extractor: TemporalExtractor,
        normalizer_config: NormalizerConfig = DEFAULT_CONFIG,
        executor_config: Optional[ExecutorConfig] = None,
        audit_config: Optional[AuditConfig] = None,
        analysis_config: Optional[AnalysisConfig] = None,
        task_number: Callable[[], str] = new_task_number,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._rule_store = rule_store
        self._ledger = ledger
        self._audit = audit
        self._executor = executor
        self._extractor = extractor
        self._normalizer_config = normalizer_config
        self._executor_config = executor_config or ExecutorConfig()
        self._audit_config = audit_config or AuditConfig()
        self._analysis_config = analysis_config or AnalysisConfig()
        self._task_number = task_number
        self._clock = clock

    def _identity(self, raw: str, what: str) -> Identity:
        identity = normalize(raw, self._normalizer_config)
        if identity.is_empty:
            raise MalformedInput(f"unusable {what} id {raw!r}")
        return identity

    def _validate(self, event: ReactionEvent) -> _Trigger:
        if not event.delivery_id:
            raise MalformedInput("missing delivery id")
        if not event.message_id:
            raise MalformedInput("missing target message id")
        if not event.emoji:
            raise MalformedInput("missing reaction emoji")
        chat = self._identity(event.chat_id, "chat")
        reactor = self._identity(event.reactor_jid, "reactor")
        original = None
        if event.original_sender_jid:
            original = normalize(event.original_sender_jid, self._normalizer_config)
        return _Trigger(
            delivery_id=event.delivery_id,
            instance_id=event.instance_id,
            message_id=event.message_id,
            chat=chat,
            sender=reactor,
            content=event.original_message_content,
            timestamp=event.message_timestamp,
            emoji=event.emoji,
            original_sender=original if original is not None and not original.is_empty else None,
        )

    def _validate_message(self, message: StoredMessage, delivery_id: str) -> _Trigger:
        if not delivery_id:
            raise MalformedInput("missing delivery id")
        if not message.message_id:
            raise MalformedInput("missing message id")
        return _Trigger(
            delivery_id=delivery_id,
            instance_id=message.instance_id,
            message_id=message.message_id,
            chat=self._identity(message.chat_id, "chat"),
            sender=self._identity(message.sender_jid, "sender"),
            content=message.content,
            timestamp=message.timestamp or self._clock(),
        )

    def _audit_entry(
        self,
        delivery_id: str,
        rule: Optional[Rule],
        outcome: Outcome,
        temporal: Optional[TemporalExpression] = None,
        detail: str = "",
    ) -> None:
        self._audit.append(
            AuditLogEntry(
                delivery_id=delivery_id,
                rule_id=rule.rule_id if rule else None,
                outcome=outcome,
                created_at=self._clock(),
                raw_span=temporal.raw_span if temporal else None,
                resolved_start=temporal.resolved_start if temporal else None,
                resolved_end=temporal.resolved_end if temporal else None,
                confidence=temporal.confidence if temporal else None,
                detail=detail,
            )
        )

    def _throttle_reason(self, rule: Rule) -> Optional[str]:
        """Why ``rule`` may not run right now, or ``None`` when it may."""

        if not rule.is_limited:
            return None
        now = self._clock()
        if rule.cooldown_minutes > 0:
            last = self._ledger.last_execution(rule.rule_id)
            if last is not None and now < last + timedelta(minutes=rule.cooldown_minutes):
                return f"cooldown of {rule.cooldown_minutes} min since {last.isoformat()}"
        if rule.max_executions_per_day > 0:
            zone = ZoneInfo(self._extractor.config.timezone)
            midnight = now.astimezone(zone).replace(hour=0, minute=0, second=0, microsecond=0)
            count = self._ledger.count_executions(rule.rule_id, midnight)
            if count >= rule.max_executions_per_day:
                return f"{count} executions today, limit {rule.max_executions_per_day}"
        return None

    def _fallback_start(self, timestamp: datetime) -> datetime:
        zone = ZoneInfo(self._extractor.config.timezone)
        local = timestamp.astimezone(zone) if timestamp.tzinfo else timestamp.replace(tzinfo=zone)
        return local.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)

    def _language(self, content: str) -> str:
        config = self._extractor.config
        if config.auto_detect_language:
            return detect_language(content, config.default_language)
        return config.default_language

    def _build_parameters(
        self,
        rule: Rule,
        trigger: _Trigger,
        temporal: Optional[TemporalExpression],
    ) -> Dict[str, Any]:
        number = self._task_number()
        content = trigger.content
        hashtags = extract_hashtags(content)
        context = {
            "content": content,
            "emoji": trigger.emoji,
            "reaction": trigger.emoji,
            "hashtags": ", ".join(hashtags),
            "timestamp": trigger.timestamp.isoformat(),
            "messageId": trigger.message_id,
            "chatId": trigger.chat.jid,
            "senderJid": trigger.sender.jid,
        }
        rendered = render_fields(rule.template, context, task_number=lambda: number)

        params: Dict[str, Any] = dict(rendered)
        params.update(
            {
                "instance_id": trigger.instance_id,
                "chat_jid": trigger.chat.jid,
                "message_id": trigger.message_id,
                "sender_jid": trigger.sender.jid,
                "delivery_id": trigger.delivery_id,
                "rule_id": rule.rule_id,
                "trigger": rule.trigger.value,
            }
        )
        if trigger.original_sender is not None:
            params["original_sender_jid"] = trigger.original_sender.jid

        language = self._language(content)
        if rule.kind is ActionKind.CREATE_TASK:
            params["title"] = rendered.get("title") or title_from_content(content, f"Task {number}")
            params["description"] = rendered.get("description", "")
            params["priority"] = rendered.get("priority") or extract_priority(
                content, language, self._analysis_config
            )
            params["status"] = rendered.get("status") or "todo"
            params["task_number"] = number
            params["tags"] = extract_tags(content, self._analysis_config)
            params["due"] = temporal.resolved_start.isoformat() if temporal else None
            params["due_all_day"] = temporal.all_day if temporal else None
            params["confidence"] = temporal.confidence if temporal else None
            return params

        params["title"] = rendered.get("title") or title_from_content(content, "WhatsApp event")
        params["description"] = rendered.get("description", "")
        duration = extract_duration(content) or suggest_duration(content, self._extractor.config)
        if temporal is None:
            start = self._fallback_start(trigger.timestamp)
            end = start + timedelta(minutes=duration)
            all_day = False
        elif temporal.all_day:
            start = temporal.resolved_start
            end = start + timedelta(days=1)
            all_day = True
        else:
            start = temporal.resolved_start
            end = temporal.resolved_end or start + timedelta(minutes=duration)
            all_day = False
        params["start"] = start.isoformat()
        params["end"] = end.isoformat()
        params["all_day"] = all_day
        params["duration_minutes"] = None if all_day else int((end - start).total_seconds() // 60)
        params["location"] = (temporal.location if temporal else None) or rendered.get("location") or None
        params["meet_invite"] = wants_virtual_meeting(content, language, self._analysis_config)
        params["confidence"] = temporal.confidence if temporal else None
        return params

    async def _run(self, trigger: _Trigger, rule: Rule) -> ProcessingResult:
        """Limit check, extraction, reservation, execution and audit for one matched rule."""

        reason = self._throttle_reason(rule)
        if reason is not None:
            LOGGER.info("Rule %s skipped for %s: %s", rule.rule_id, trigger.delivery_id, reason)
            self._audit_entry(trigger.delivery_id, rule, Outcome.THROTTLED, detail=reason)
            return ProcessingResult(
                outcome=Outcome.THROTTLED,
                delivery_id=trigger.delivery_id,
                rule_id=rule.rule_id,
            )

        temporal = self._extractor.extract(trigger.content, trigger.timestamp)
        if temporal is not None and self._extractor.is_ambiguous(temporal):
            LOGGER.warning(
                "Ambiguous time %r for %s (confidence %.2f), proceeding",
                temporal.raw_span,
                trigger.delivery_id,
                temporal.confidence,
            )

        params = self._build_parameters(rule, trigger, temporal)
        record = ActionRecord(
            id=str(uuid.uuid4()),
            source_delivery_id=trigger.delivery_id,
            rule_id=rule.rule_id,
            kind=rule.kind,
            rendered_parameters=params,
            status=RecordStatus.PENDING,
            created_at=self._clock(),
        )

        reservation = self._ledger.reserve(record, self._executor_config.max_attempts)
        if reservation.already_reserved:
            LOGGER.info("Duplicate delivery %s (record is %s)", trigger.delivery_id, reservation.status.value)
            self._audit_entry(
                trigger.delivery_id,
                rule,
                Outcome.DUPLICATE,
                temporal,
                detail=f"existing record {reservation.status.value}, attempts={reservation.attempts}",
            )
            return ProcessingResult(
                outcome=Outcome.DUPLICATE,
                delivery_id=trigger.delivery_id,
                rule_id=rule.rule_id,
            )

        try:
            external_id = await self._executor.execute(rule.kind, params)
        except Exception as exc:
            # Any error after reservation marks the record failed; cancellation
            # is not an Exception and leaves it pending.
            detail = str(exc) if isinstance(exc, SinkError) else f"{type(exc).__name__}: {exc}"
            self._ledger.mark_failed(trigger.delivery_id, detail)
            self._audit_entry(trigger.delivery_id, rule, Outcome.FAILED, temporal, detail=detail)
            LOGGER.error("Rule %s failed for %s: %s", rule.rule_id, trigger.delivery_id, detail)
            raise SinkFailure(trigger.delivery_id, detail) from exc

        self._ledger.mark_executed(trigger.delivery_id, external_id)
        self._audit_entry(trigger.delivery_id, rule, Outcome.EXECUTED, temporal, detail=external_id)
        LOGGER.info("Rule %s executed for %s (%s)", rule.rule_id, trigger.delivery_id, external_id)

        return ProcessingResult(
            outcome=Outcome.EXECUTED,
            delivery_id=trigger.delivery_id,
            rule_id=rule.rule_id,
            record_id=record.id,
            external_id=external_id,
            temporal=temporal,
            parameters=params,
        )

    async def handle(self, event: ReactionEvent) -> ProcessingResult:
        """Process one reaction event through the core pipeline.

        Raises ``SinkFailure`` when the side effect fails; every other
        outcome is reported through the returned result.
        """

        try:
            trigger = self._validate(event)
        except MalformedInput as exc:
            LOGGER.warning("Dropping malformed event %s: %s", event.delivery_id or "<none>", exc)
            return ProcessingResult(outcome=Outcome.MALFORMED, delivery_id=event.delivery_id)

        # One snapshot per event: a hot reload mid-evaluation must not mix tables.
        rules = self._rule_store.snapshot()
        rule = match_rule(event, rules, self._normalizer_config)
        if rule is None:
            LOGGER.debug("No rule for %s in %s", event.emoji, trigger.chat.jid)
            if self._audit_config.record_no_match:
                self._audit_entry(event.delivery_id, None, Outcome.NO_RULE, detail=f"emoji {event.emoji}")
            return ProcessingResult(outcome=Outcome.NO_RULE, delivery_id=event.delivery_id)

        return await self._run(trigger, rule)

    async def handle_message(self, message: StoredMessage, delivery_id: str) -> ProcessingResult:
        """Run hashtag and keyword rules against a plain message.

        Messages without a matching rule are the common case and are never
        audited.
        """

        rules = self._rule_store.snapshot()
        rule = match_message_rule(message, rules, self._normalizer_config)
        if rule is None:
            return ProcessingResult(outcome=Outcome.NO_RULE, delivery_id=delivery_id)

        try:
            trigger = self._validate_message(message, delivery_id)
        except MalformedInput as exc:
            LOGGER.warning("Dropping malformed message %s: %s", delivery_id or "<none>", exc)
            return ProcessingResult(outcome=Outcome.MALFORMED, delivery_id=delivery_id)

        LOGGER.debug("Message %s matched %s rule %s", message.message_id, rule.trigger.value, rule.rule_id)
        return await self._run(trigger, rule)
