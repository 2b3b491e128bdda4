"""Message text analysis (core domain).

Reads hashtags, trigger keywords, task priority, category tags, explicit
durations and virtual-meeting hints from free text. Everything here is a
pure function over the message content and an ``AnalysisConfig``.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from core.config import AnalysisConfig

HASHTAG_RE = re.compile(r"#(\w+)")

_DURATION_RE = re.compile(
    r"(?<![\w:.,/])(?P<value>\d{1,3}(?:[.,]\d{1,2})?)\s*"
    r"(?P<unit>horas?|hours?|hrs?|hs|h|minutos?|minutes?|mins?)(?!\w)",
    re.IGNORECASE,
)
_HALF_HOUR_RE = re.compile(r"(?<!\w)(?:media\s+hora|half\s+(?:an\s+)?hour)(?!\w)", re.IGNORECASE)
_CLOCK_CUE_RE = re.compile(r"(?:(?<!\w)(?:a\s+)?las?|(?<!\w)at|@)\s*$", re.IGNORECASE)
_SHORT_HOUR_UNITS = ("h", "hr", "hrs", "hs")

PRIORITIES = ("low", "medium", "high")


def contains_word(text: str, words: Iterable[str]) -> bool:
    """True when any of ``words`` appears in ``text`` as a whole word or phrase."""

    lowered = (text or "").lower()
    return any(re.search(rf"(?<!\w){re.escape(word.lower())}(?!\w)", lowered) for word in words)


def extract_hashtags(text: str) -> List[str]:
    """Hashtags without the ``#``, in order of appearance, without repeats."""

    seen: List[str] = []
    for tag in HASHTAG_RE.findall(text or ""):
        if tag.lower() not in (existing.lower() for existing in seen):
            seen.append(tag)
    return seen


def matches_pattern(value: str, pattern: str) -> bool:
    """Case-insensitive comparison where ``*`` in ``pattern`` matches any run of characters."""

    if "*" not in pattern:
        return value.lower() == pattern.lower()
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.fullmatch(regex, value, re.IGNORECASE) is not None


def contains_keyword(text: str, keyword: str) -> bool:
    keyword = keyword.strip().lower()
    return bool(keyword) and keyword in (text or "").lower()


def extract_priority(text: str, language: str, config: AnalysisConfig) -> str:
    if contains_word(text, config.high_priority_words.get(language, ())):
        return "high"
    if contains_word(text, config.low_priority_words.get(language, ())):
        return "low"
    return "medium"


def extract_tags(text: str, config: AnalysisConfig) -> List[str]:
    """Category tags whose keywords occur in the text, then the message hashtags."""

    tags = [tag for tag, words in config.tag_keywords.items() if contains_word(text, words)]
    for hashtag in extract_hashtags(text):
        if hashtag.lower() not in tags:
            tags.append(hashtag.lower())
    return tags


def extract_duration(text: str) -> Optional[int]:
    """Return an explicit duration in minutes ("2 horas", "30 min", "1.5h").

    A number after a clock cue ("a las 5 hrs") or a short hour unit above 12
    ("17 hrs") is a time of day, not a duration.
    """

    text = text or ""
    for match in _DURATION_RE.finditer(text):
        if _CLOCK_CUE_RE.search(text[: match.start()]):
            continue
        value = float(match.group("value").replace(",", "."))
        unit = match.group("unit").lower()
        if unit in _SHORT_HOUR_UNITS and value > 12:
            continue
        minutes = value * 60 if unit.startswith("h") else value
        if minutes > 0:
            return int(round(minutes))
    if _HALF_HOUR_RE.search(text):
        return 30
    return None


def wants_virtual_meeting(text: str, language: str, config: AnalysisConfig) -> bool:
    return contains_word(text, config.virtual_meeting_words.get(language, ()))
