from __future__ import annotations

from datetime import datetime, timezone

from core.models import ActionKind, ReactionEvent, StoredMessage, TriggerKind
from core.rules_engine import build_rules, match_message_rule, match_rule


def _event(emoji: str = "✅", chat: str = "5215579188699@s.whatsapp.net", **overrides) -> ReactionEvent:
    values = dict(
        message_id="M1",
        chat_id=chat,
        reactor_jid="5215579188699@s.whatsapp.net",
        emoji=emoji,
        original_message_content="hola",
        message_timestamp=datetime(2024, 5, 10, 23, 0, tzinfo=timezone.utc),
        instance_id="main",
        delivery_id="d-1",
    )
    values.update(overrides)
    return ReactionEvent(**values)


def test_build_rules_sorts_by_priority_and_keeps_tie_order() -> None:
    rules = build_rules(
        [
            {"id": "low", "emoji": "✅", "action": "create_task"},
            {"id": "high", "emoji": "✅", "action": "create_task", "priority": 5},
            {"id": "low-2", "emoji": "✅", "action": "create_task"},
        ]
    )
    assert [rule.rule_id for rule in rules] == ["high", "low", "low-2"]


def test_build_rules_skips_disabled_and_invalid() -> None:
    rules = build_rules(
        [
            {"id": "off", "emoji": "✅", "action": "create_task", "enabled": False},
            {"id": "bad-kind", "emoji": "✅", "action": "send_email"},
            {"id": "no-emoji", "action": "create_task"},
            {"id": "bad-performer", "emoji": "✅", "action": "create_task", "scope": {"performer": "bots"}},
            {"id": "ok", "emojis": ["📅"], "kind": "create_calendar_event", "template": "Meet {{sender}}"},
        ]
    )
    assert [rule.rule_id for rule in rules] == ["ok"]
    assert rules[0].kind is ActionKind.CREATE_CALENDAR_EVENT
    assert rules[0].template == {"title": "Meet {{sender}}"}


def test_match_ignores_variation_selectors() -> None:
    rules = build_rules([{"id": "check", "emoji": "\u2714\ufe0f", "action": "create_task"}])
    assert match_rule(_event(emoji="\u2714"), rules).rule_id == "check"
    assert match_rule(_event(emoji="\u2714\ufe0f"), rules).rule_id == "check"


def test_no_match_returns_none() -> None:
    rules = build_rules([{"id": "check", "emoji": "✅", "action": "create_task"}])
    assert match_rule(_event(emoji="👍"), rules) is None
    assert match_rule(_event(emoji=""), rules) is None


def test_scope_chats_compare_canonical_identities() -> None:
    rules = build_rules(
        [
            {
                "id": "scoped",
                "emoji": "✅",
                "action": "create_task",
                "priority": 10,
                "scope": {"chats": ["5579188699"]},
            },
            {"id": "fallback", "emoji": "✅", "action": "create_task"},
        ]
    )
    assert match_rule(_event(chat="525579188699@s.whatsapp.net"), rules).rule_id == "scoped"
    assert match_rule(_event(chat="120363@g.us"), rules).rule_id == "fallback"


def test_wildcard_scope_accepts_everything() -> None:
    rules = build_rules(
        [{"id": "any", "emoji": "✅", "action": "create_task", "scope": {"chats": ["*"], "instances": "*"}}]
    )
    assert match_rule(_event(chat="120363@g.us", instance_id="other"), rules).rule_id == "any"


def test_scope_instances_and_contacts() -> None:
    rules = build_rules(
        [
            {
                "id": "boss",
                "emoji": "✅",
                "action": "create_task",
                "scope": {"instances": ["main"], "contacts": ["+52 55 7918 8699"]},
            }
        ]
    )
    assert match_rule(_event(), rules).rule_id == "boss"
    assert match_rule(_event(instance_id="other"), rules) is None
    assert match_rule(_event(reactor_jid="5215500000000@s.whatsapp.net"), rules) is None


def test_performer_filters() -> None:
    rules = build_rules(
        [
            {"id": "mine", "emoji": "✅", "action": "create_task", "priority": 2, "scope": {"performer": "user_only"}},
            {"id": "theirs", "emoji": "✅", "action": "create_task", "scope": {"performer": "contacts_only"}},
        ]
    )
    assert match_rule(_event(from_me=True), rules).rule_id == "mine"
    assert match_rule(_event(from_me=False), rules).rule_id == "theirs"


def test_match_sorts_unsorted_input() -> None:
    rules = build_rules(
        [
            {"id": "a", "emoji": "✅", "action": "create_task", "priority": 1},
            {"id": "b", "emoji": "✅", "action": "create_task", "priority": 9},
        ]
    )
    assert match_rule(_event(), list(reversed(rules))).rule_id == "b"


def _message(content: str, chat: str = "120363@g.us") -> StoredMessage:
    return StoredMessage(
        instance_id="main",
        message_id="M2",
        chat_id=chat,
        sender_jid="5215579188699@s.whatsapp.net",
        content=content,
        timestamp=datetime(2024, 5, 10, 23, 0, tzinfo=timezone.utc),
    )


def test_text_trigger_rules_build() -> None:
    rules = build_rules(
        [
            {"id": "tag", "trigger": "hashtag", "hashtag": "#Tarea", "action": "create_task"},
            {"id": "kw", "trigger": "keyword", "keywords": [" junta ", ""], "action": "create_calendar_event"},
            {"id": "limited", "emoji": "✅", "action": "create_task", "cooldown_minutes": 5},
        ]
    )
    tag, kw, limited = rules
    assert tag.trigger is TriggerKind.HASHTAG and tag.hashtags == ("Tarea",)
    assert kw.trigger is TriggerKind.KEYWORD and kw.keywords == ("junta",)
    assert limited.trigger is TriggerKind.REACTION
    assert limited.is_limited and not tag.is_limited


def test_invalid_text_trigger_rules_are_skipped() -> None:
    rules = build_rules(
        [
            {"id": "no-tags", "trigger": "hashtag", "action": "create_task"},
            {"id": "no-words", "trigger": "keyword", "keywords": [], "action": "create_task"},
            {"id": "bad-trigger", "trigger": "mention", "emoji": "✅", "action": "create_task"},
            {"id": "negative", "emoji": "✅", "action": "create_task", "max_executions_per_day": -1},
            {"id": "ok", "trigger": "keyword", "keyword": "junta", "action": "create_task"},
        ]
    )
    assert [rule.rule_id for rule in rules] == ["ok"]


def test_hashtag_patterns_and_keywords_match_messages() -> None:
    rules = build_rules(
        [
            {"id": "tag", "trigger": "hashtag", "hashtags": ["proyecto-*", "urgente"], "action": "create_task"},
            {"id": "kw", "trigger": "keyword", "keywords": ["agendar"], "action": "create_calendar_event"},
        ]
    )
    assert match_message_rule(_message("Ver avances #URGENTE"), rules).rule_id == "tag"
    assert match_message_rule(_message("Hay que Agendar la demo"), rules).rule_id == "kw"
    assert match_message_rule(_message("#urgentes no cuenta"), rules) is None
    assert match_message_rule(_message(""), rules) is None


def test_message_rules_respect_scope() -> None:
    rules = build_rules(
        [
            {
                "id": "kw",
                "trigger": "keyword",
                "keywords": ["junta"],
                "action": "create_task",
                "scope": {"chats": ["120363@g.us"]},
            }
        ]
    )
    assert match_message_rule(_message("junta hoy"), rules) is not None
    assert match_message_rule(_message("junta hoy", chat="999@g.us"), rules) is None


def test_reaction_matching_ignores_text_trigger_rules() -> None:
    rules = build_rules(
        [{"id": "kw", "trigger": "keyword", "keywords": ["hola"], "emoji": "✅", "action": "create_task"}]
    )
    assert match_rule(_event(), rules) is None
