"""Temporal expression extraction with AM/PM correction (core domain).

Base recognition (phrase -> naive date/time) is delegated to an injected
recognizer. This module owns everything after that: picking the span,
normalizing ranges, the AM/PM correction pass, confidence, and time zones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import re
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from core.config import TemporalConfig
from core.models import TemporalExpression
from core.text_analysis import contains_word

LOGGER = logging.getLogger(__name__)

TWELVE_HOURS = timedelta(hours=12)

_SPANISH_HINTS = (
    "para", "con", "que", "una", "del", "las", "los", "por", "como", "pero",
    "muy", "hoy", "mañana", "nos", "vemos", "tarde", "noche",
)
_ENGLISH_HINTS = ("the", "today", "tomorrow", "with", "meeting", "tonight", "see", "at")

_LOCATION_RE = re.compile(r"(?:^|\s)(?:en|at|@)\s+(?P<place>[^\d\s,.;!?][^,.;!?\n]*)", re.IGNORECASE)
_LOCATION_STOP_RE = re.compile(
    r"\s+(?:a\s+las?|hoy|mañana|today|tomorrow|tonight|from|de\s+\d|at\s+\d|\d)", re.IGNORECASE
)


@dataclass(frozen=True)
class RawSpan:
    """One phrase found by a recognizer, in naive local time."""

    text: str
    start: datetime
    end: Optional[datetime] = None
    certainty: float = 0.8
    has_time: bool = True
    explicit_meridiem: bool = False


def detect_language(text: str, default: str = "es") -> str:
    """Guess ``es`` or ``en`` from a few high-frequency words."""

    words = set(re.findall(r"\w+", text.lower()))
    if words & set(_SPANISH_HINTS):
        return "es"
    if words & set(_ENGLISH_HINTS):
        return "en"
    return default


def has_evening_context(text: str, keywords: Iterable[str]) -> bool:
    return contains_word(text, keywords)


def correct_meridiem(
    span: RawSpan,
    anchor: datetime,
    text: str,
    evening_keywords: Iterable[str],
    meal_keywords: Iterable[str] = (),
) -> Tuple[datetime, Optional[datetime], bool]:
    """Apply at most one AM->PM shift to an ambiguous clock time.

    The shift happens when the time already passed today, when an hour from
    4 to 11 comes with evening context, or when an hour from 1 to 7 comes
    with a lunch or dinner word ("Comemos de 2-4").

    ``anchor`` and the span must share the same naive local clock. A shifted
    hour is always >= 13, so calling this again on its output is a no-op.
    """

    start, end = span.start, span.end
    if not span.has_time or span.explicit_meridiem:
        return start, end, False

    hour = start.hour
    if not 1 <= hour <= 11:
        return start, end, False

    already_passed = start < anchor and start.date() == anchor.date()
    evening = 4 <= hour <= 11 and has_evening_context(text, evening_keywords)
    meal = hour <= 7 and contains_word(text, meal_keywords)
    if not (already_passed or evening or meal):
        return start, end, False

    shifted_end = end + TWELVE_HOURS if end is not None else None
    return start + TWELVE_HOURS, shifted_end, True


def normalize_range(start: datetime, end: Optional[datetime]) -> Optional[datetime]:
    """Move a range end forward until it is after the start ("11-1" -> 11:00-13:00)."""

    if end is None:
        return None
    while end <= start:
        end += TWELVE_HOURS
    return end


def extract_location(text: str) -> Optional[str]:
    """Return a place phrase such as ``la casa`` from ``... en la casa``."""

    for match in _LOCATION_RE.finditer(text or ""):
        place = _LOCATION_STOP_RE.split(match.group("place"), maxsplit=1)[0].strip()
        if 3 <= len(place) <= 50:
            return place
    return None


def suggest_duration(text: str, config: TemporalConfig) -> int:
    """Return a default event length in minutes, longer for meals."""

    for word, minutes in config.meal_durations.items():
        if contains_word(text, (word,)):
            return minutes
    return config.default_duration_minutes


class TemporalExtractor:
    """Find the first date/time phrase in text and resolve it against an anchor."""

    def __init__(self, recognizer, config: Optional[TemporalConfig] = None) -> None:
        self._recognizer = recognizer
        self._config = config or TemporalConfig()
        self._zone = ZoneInfo(self._config.timezone)

    @property
    def config(self) -> TemporalConfig:
        return self._config

    def _resolve_language(self, text: str, locale: Optional[str]) -> str:
        if locale:
            return locale.split("-", 1)[0].split("_", 1)[0].lower()
        if self._config.auto_detect_language:
            return detect_language(text, self._config.default_language)
        return self._config.default_language

    def _to_local(self, anchor_time: datetime) -> datetime:
        if anchor_time.tzinfo is None:
            return anchor_time
        return anchor_time.astimezone(self._zone).replace(tzinfo=None)

    def extract(
        self,
        text: str,
        anchor_time: datetime,
        locale: Optional[str] = None,
    ) -> Optional[TemporalExpression]:
        if not text or not text.strip():
            return None

        language = self._resolve_language(text, locale)
        anchor_local = self._to_local(anchor_time)
        spans: List[RawSpan] = list(self._recognizer.recognize(text, language, anchor_local))
        if not spans:
            return None

        span = spans[0]
        span = RawSpan(
            text=span.text,
            start=span.start,
            end=normalize_range(span.start, span.end),
            certainty=span.certainty,
            has_time=span.has_time,
            explicit_meridiem=span.explicit_meridiem,
        )
        keywords = self._config.evening_keywords.get(language, ())
        start, end, corrected = correct_meridiem(
            span, anchor_local, text, keywords, self._config.pm_meal_keywords
        )

        confidence = span.certainty
        if corrected:
            confidence -= self._config.correction_penalty
            LOGGER.debug("PM correction applied to %r -> %s", span.text, start.isoformat())
        confidence = round(min(max(confidence, 0.0), 1.0), 2)

        return TemporalExpression(
            anchor_time=anchor_time,
            raw_span=span.text,
            resolved_start=start.replace(tzinfo=self._zone),
            resolved_end=end.replace(tzinfo=self._zone) if end is not None else None,
            confidence=confidence,
            corrected=corrected,
            all_day=not span.has_time,
            location=extract_location(text),
        )

    def is_ambiguous(self, expression: TemporalExpression) -> bool:
        return expression.confidence < self._config.low_confidence
