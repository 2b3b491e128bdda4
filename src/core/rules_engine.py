"""Rule compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.config import NormalizerConfig
from core.dedup import normalize_emoji
from core.identity import DEFAULT_CONFIG, normalize, normalize_many
from core.models import ActionKind, Identity, ReactionEvent, StoredMessage, TriggerKind
from core.text_analysis import contains_keyword, extract_hashtags, matches_pattern

LOGGER = logging.getLogger(__name__)

WILDCARD = "*"
PERFORMERS = ("anyone", "user_only", "contacts_only")


@dataclass(frozen=True)
class RuleScope:
    """Chat/contact predicate. Empty sets accept everything."""

    chats: FrozenSet[Identity] = frozenset()
    contacts: FrozenSet[Identity] = frozenset()
    instances: FrozenSet[str] = frozenset()
    performer: str = "anyone"

    def accepts(self, chat: Identity, reactor: Identity, instance_id: str, from_me: bool) -> bool:
        if self.chats and chat not in self.chats:
            return False
        if self.contacts and reactor not in self.contacts:
            return False
        if self.instances and instance_id not in self.instances:
            return False
        if self.performer == "user_only" and not from_me:
            return False
        if self.performer == "contacts_only" and from_me:
            return False
        return True


@dataclass(frozen=True)
class Rule:
    """Compiled rule used by the matcher and executor."""

    rule_id: str
    name: str
    emojis: FrozenSet[str]
    kind: ActionKind
    template: Mapping[str, str]
    priority: int = 0
    scope: RuleScope = field(default_factory=RuleScope)
    trigger: TriggerKind = TriggerKind.REACTION
    hashtags: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    cooldown_minutes: int = 0
    max_executions_per_day: int = 0

    @property
    def is_limited(self) -> bool:
        return self.cooldown_minutes > 0 or self.max_executions_per_day > 0

    def matches_text(self, content: str) -> bool:
        """Hashtag rules match any message hashtag; keyword rules any substring."""

        if self.trigger is TriggerKind.HASHTAG:
            tags = extract_hashtags(content)
            return any(matches_pattern(tag, pattern) for tag in tags for pattern in self.hashtags)
        if self.trigger is TriggerKind.KEYWORD:
            return any(contains_keyword(content, keyword) for keyword in self.keywords)
        return False


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _build_scope(raw: Mapping[str, Any], config: NormalizerConfig) -> RuleScope:
    chats = [c for c in _as_list(raw.get("chats")) if c != WILDCARD]
    contacts = [c for c in _as_list(raw.get("contacts")) if c != WILDCARD]
    instances = [i for i in _as_list(raw.get("instances")) if i != WILDCARD]
    performer = str(raw.get("performer", "anyone"))
    if performer not in PERFORMERS:
        raise ValueError(f"Unsupported performer filter: {performer}")
    return RuleScope(
        chats=frozenset(normalize_many(chats, config)),
        contacts=frozenset(normalize_many(contacts, config)),
        instances=frozenset(instances),
        performer=performer,
    )


def build_rules(rules_config: Iterable[Mapping[str, Any]], config: NormalizerConfig = DEFAULT_CONFIG) -> List[Rule]:
    """Compile rule configs, sorted by descending priority.

    Disabled rules are skipped. Invalid rules are logged and skipped so one bad
    entry cannot take the whole table down during a hot reload.
    """

    compiled: List[Rule] = []
    for index, rule in enumerate(rules_config):
        if not rule.get("enabled", True):
            continue
        rule_id = str(rule.get("id") or rule.get("name") or f"rule-{index}")
        try:
            trigger = TriggerKind(rule.get("trigger") or TriggerKind.REACTION.value)
            emojis = frozenset(normalize_emoji(e) for e in _as_list(rule.get("emoji") or rule.get("emojis")))
            emojis = frozenset(e for e in emojis if e)
            hashtags = tuple(
                h.strip().lstrip("#") for h in _as_list(rule.get("hashtags") or rule.get("hashtag")) if h.strip("# ")
            )
            keywords = tuple(k.strip() for k in _as_list(rule.get("keywords") or rule.get("keyword")) if k.strip())
            if trigger is TriggerKind.REACTION and not emojis:
                raise ValueError("rule has no emoji")
            if trigger is TriggerKind.HASHTAG and not hashtags:
                raise ValueError("hashtag rule has no hashtags")
            if trigger is TriggerKind.KEYWORD and not keywords:
                raise ValueError("keyword rule has no keywords")
            cooldown = int(rule.get("cooldown_minutes", 0))
            max_per_day = int(rule.get("max_executions_per_day", 0))
            if cooldown < 0 or max_per_day < 0:
                raise ValueError("cooldown_minutes and max_executions_per_day must not be negative")
            kind = ActionKind(rule.get("action") or rule.get("kind"))
            template = rule.get("template") or {}
            if isinstance(template, str):
                template = {"title": template}
            compiled.append(
                Rule(
                    rule_id=rule_id,
                    name=str(rule.get("name", rule_id)),
                    emojis=emojis,
                    kind=kind,
                    template={str(k): str(v) for k, v in template.items()},
                    priority=int(rule.get("priority", 0)),
                    scope=_build_scope(rule.get("scope") or {}, config),
                    trigger=trigger,
                    hashtags=hashtags,
                    keywords=keywords,
                    cooldown_minutes=cooldown,
                    max_executions_per_day=max_per_day,
                )
            )
        except (AttributeError, TypeError, ValueError) as exc:
            LOGGER.warning("Skipping invalid rule %s: %s", rule_id, exc)
    # sorted() is stable, so equal priorities keep their configured order.
    return sorted(compiled, key=lambda r: r.priority, reverse=True)


def match_rule(
    event: ReactionEvent,
    rules: Sequence[Rule],
    config: NormalizerConfig = DEFAULT_CONFIG,
) -> Optional[Rule]:
    """Return the first applicable rule for the reaction, if any.

    ``rules`` is expected in evaluation order (``build_rules`` output); the
    sort here keeps the contract when callers hand over an unsorted list.
    """

    emoji = normalize_emoji(event.emoji)
    if not emoji:
        return None
    chat = normalize(event.chat_id, config)
    reactor = normalize(event.reactor_jid, config)

    for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
        if rule.trigger is not TriggerKind.REACTION or emoji not in rule.emojis:
            continue
        if not rule.scope.accepts(chat, reactor, event.instance_id, event.from_me):
            continue
        return rule
    return None


def match_message_rule(
    message: StoredMessage,
    rules: Sequence[Rule],
    config: NormalizerConfig = DEFAULT_CONFIG,
) -> Optional[Rule]:
    """Return the first hashtag or keyword rule triggered by a plain message."""

    if not message.content:
        return None
    chat = normalize(message.chat_id, config)
    sender = normalize(message.sender_jid, config)

    for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
        if rule.trigger is TriggerKind.REACTION or not rule.matches_text(message.content):
            continue
        if not rule.scope.accepts(chat, sender, message.instance_id, message.from_me):
            continue
        return rule
    return None
