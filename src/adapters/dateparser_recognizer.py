"""Date/time phrase recognizer backed by dateparser.

Day phrases ("hoy", "mañana", "viernes", "15 de enero") are resolved by
dateparser against the anchor; clock times and ranges ("6:30", "a las 5",
"2-4 pm", "de 2 a 4") come from a small bounded grammar so that ambiguous
hours reach the core correction pass untouched.
"""

from __future__ import annotations

from datetime import date, datetime, time
import logging
import re
from typing import List, Optional, Tuple

import dateparser

from core.temporal import RawSpan

LOGGER = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("es", "en")

_MERIDIEM = (
    r"a\.?\s?m\.?|p\.?\s?m\.?"
    r"|de\s+la\s+ma[ñn]ana|de\s+la\s+tarde|de\s+la\s+noche|del\s+mediod[ií]a"
    r"|in\s+the\s+morning|in\s+the\s+afternoon|in\s+the\s+evening|at\s+night"
)
_MERIDIEM_TOKEN = rf"(?:{_MERIDIEM})(?!\w)"
_MERIDIEM_RE = re.compile(rf"(?<!\w){_MERIDIEM_TOKEN}", re.IGNORECASE)

_RANGE_RE = re.compile(
    r"(?<![\w/:\-])(?:(?P<cue>de|desde|entre|from|between)\s+)?(?:las?\s+)?"
    rf"(?P<h1>\d{{1,2}})(?::(?P<m1>\d{{2}}))?\s*(?P<mer1>{_MERIDIEM_TOKEN})?\s*"
    r"(?P<sep>-|–|—|\ba\b|\bto\b|\bhasta\b|\buntil\b|\by\b|\band\b)\s*(?:las?\s+)?"
    rf"(?P<h2>\d{{1,2}})(?::(?P<m2>\d{{2}}))?(?![\d/:\-])\s*(?P<mer2>{_MERIDIEM_TOKEN})?",
    re.IGNORECASE,
)

_TIME_RE = re.compile(
    r"(?<![\w/:\-])(?:(?P<cue>a\s+las?|las|at|@)\s+)?"
    r"(?P<h>\d{1,2})(?::(?P<m>\d{2})|(?P<hrs>\s*(?:hrs?|hs)\b))?(?![\d/:])"
    rf"\s*(?P<mer>{_MERIDIEM_TOKEN})?",
    re.IGNORECASE,
)

_MONTHS_ES = (
    "enero|febrero|marzo|abril|mayo|junio|julio|agosto|septiembre|setiembre"
    "|octubre|noviembre|diciembre"
)
_MONTHS_EN = "january|february|march|april|may|june|july|august|september|october|november|december"
_DAY_RE = re.compile(
    r"(?<!\w)(?P<day>"
    r"pasado\s+ma[ñn]ana|day\s+after\s+tomorrow|hoy|ma[ñn]ana|today|tomorrow|tonight|esta\s+noche"
    r"|lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo"
    r"|monday|tuesday|wednesday|thursday|friday|saturday|sunday"
    rf"|\d{{1,2}}\s+de\s+(?:{_MONTHS_ES})"
    rf"|(?:{_MONTHS_EN})\s+\d{{1,2}}"
    r"|\d{1,2}/\d{1,2}(?:/\d{2,4})?"
    r"|\d{1,2}-\d{1,2}(?:-\d{2,4})?"
    r")(?!\w)",
    re.IGNORECASE,
)

# Phrases dateparser does not know, mapped to ones it does.
_DAY_ALIASES = {
    "tonight": "today",
    "esta noche": "hoy",
    "manana": "mañana",
    "pasado manana": "pasado mañana",
    "day after tomorrow": "in 2 days",
}

_PM_WORDS = ("p", "tarde", "noche", "mediod", "afternoon", "evening", "night")


def _is_pm(meridiem: str) -> bool:
    lowered = meridiem.lower()
    return any(word in lowered for word in _PM_WORDS)


def _apply_meridiem(hour: int, meridiem: Optional[str]) -> int:
    if not meridiem:
        return hour
    if _is_pm(meridiem):
        return hour % 12 + 12
    return hour % 12


def _valid_clock(hour: int, minute: int, meridiem: Optional[str]) -> bool:
    if minute > 59:
        return False
    if meridiem:
        return 1 <= hour <= 12
    return 0 <= hour <= 23


def _overlaps(span: Tuple[int, int], others: List[Tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in others)


class _ClockMatch:
    def __init__(
        self,
        span: Tuple[int, int],
        text: str,
        start: time,
        end: Optional[time],
        explicit: bool,
    ) -> None:
        self.span = span
        self.text = text
        self.start = start
        self.end = end
        self.explicit = explicit


def _looks_like_date(match: re.Match) -> bool:
    """Dashed day-month such as "15-01" or "25-3", not a clock range."""

    if match.group("m1") or match.group("m2"):
        return False
    if match.group("mer1") or match.group("mer2"):
        return False
    h1, h2 = match.group("h1"), match.group("h2")
    if len(h2) == 2 and h2.startswith("0"):
        return True
    return int(h1) > 12 and int(h2) <= 12


def _find_ranges(text: str) -> List[_ClockMatch]:
    found: List[_ClockMatch] = []
    for match in _RANGE_RE.finditer(text):
        h1, h2 = int(match.group("h1")), int(match.group("h2"))
        m1, m2 = int(match.group("m1") or 0), int(match.group("m2") or 0)
        mer1, mer2 = match.group("mer1"), match.group("mer2")
        word_sep = match.group("sep") not in ("-", "–", "—")
        if word_sep and not (match.group("cue") or mer1 or mer2):
            continue
        if not word_sep and _looks_like_date(match):
            continue
        if not (_valid_clock(h1, m1, mer1 or mer2) and _valid_clock(h2, m2, mer2 or mer1)):
            continue
        if mer1 or mer2:
            end_hour = _apply_meridiem(h2, mer2 or mer1)
            start_hour = _apply_meridiem(h1, mer1 or mer2)
            if mer1 is None and start_hour > end_hour:
                start_hour -= 12
            h1, h2 = start_hour, end_hour
        found.append(
            _ClockMatch(
                span=match.span(),
                text=match.group(0).strip(),
                start=time(h1, m1),
                end=time(h2, m2),
                explicit=bool(mer1 or mer2),
            )
        )
    return found


def _find_times(text: str, taken: List[Tuple[int, int]]) -> List[_ClockMatch]:
    found: List[_ClockMatch] = []
    for match in _TIME_RE.finditer(text):
        if _overlaps(match.span(), taken):
            continue
        hour = int(match.group("h"))
        minute = int(match.group("m") or 0)
        meridiem = match.group("mer")
        hrs = match.group("hrs")
        cue = (match.group("cue") or "").lower()
        # A bare "las" precedes counted things too ("compra las 3 manzanas").
        strong_cue = bool(cue) and cue != "las"
        if hrs and not cue and hour <= 12:
            # "2 hrs" without a cue is a duration.
            continue
        if not (strong_cue or match.group("m") or meridiem or hrs):
            continue
        if not _valid_clock(hour, minute, meridiem):
            continue
        found.append(
            _ClockMatch(
                span=match.span(),
                text=match.group(0).strip(),
                start=time(_apply_meridiem(hour, meridiem), minute),
                end=None,
                explicit=bool(meridiem or hrs),
            )
        )
    return found


class DateparserRecognizer:
    """RecognizerPort implementation using dateparser for day phrases."""

    def __init__(self, languages: Tuple[str, ...] = SUPPORTED_LANGUAGES) -> None:
        self._languages = languages

    def _languages_for(self, language: str) -> List[str]:
        ordered = [language] if language in self._languages else []
        return ordered + [code for code in self._languages if code != language]

    def _resolve_day(self, phrase: str, language: str, anchor: datetime) -> Optional[date]:
        lookup = re.sub(r"\s+", " ", phrase.lower())
        phrase = _DAY_ALIASES.get(lookup, phrase)
        settings = {
            "RELATIVE_BASE": anchor,
            "PREFER_DATES_FROM": "future",
            "DATE_ORDER": "MDY" if language == "en" else "DMY",
            "RETURN_AS_TIMEZONE_AWARE": False,
        }
        parsed = dateparser.parse(phrase, languages=self._languages_for(language), settings=settings)
        if parsed is None:
            LOGGER.debug("dateparser could not resolve %r", phrase)
            return None
        return parsed.date()

    def recognize(self, text: str, language: str, anchor: datetime) -> List[RawSpan]:
        if not text:
            return []

        meridiem_spans = [m.span() for m in _MERIDIEM_RE.finditer(text)]
        ranges = _find_ranges(text)
        times = _find_times(text, [r.span for r in ranges])
        clocks = sorted(ranges + times, key=lambda c: c.span[0])
        clock = clocks[0] if clocks else None

        blocked = meridiem_spans + [c.span for c in clocks]
        day_match = None
        day_value: Optional[date] = None
        for match in _DAY_RE.finditer(text):
            if _overlaps(match.span(), blocked):
                continue
            day_value = self._resolve_day(match.group("day"), language, anchor)
            if day_value is not None:
                day_match = match
                break

        if clock is None and day_value is None:
            return []

        if clock is None:
            start = datetime.combine(day_value, time(0, 0))
            return [RawSpan(text=day_match.group(0), start=start, certainty=0.6, has_time=False)]

        base_day = day_value or anchor.date()
        start = datetime.combine(base_day, clock.start)
        end = datetime.combine(base_day, clock.end) if clock.end is not None else None

        parts = [(clock.span[0], clock.text)]
        if day_match is not None:
            parts.append((day_match.start(), day_match.group(0)))
        raw = " ".join(part for _, part in sorted(parts))

        return [
            RawSpan(
                text=raw,
                start=start,
                end=end,
                certainty=0.9 if day_value is not None else 0.8,
                has_time=True,
                explicit_meridiem=clock.explicit,
            )
        ]
