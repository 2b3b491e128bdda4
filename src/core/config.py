"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class NormalizerConfig:
    """Prefix tables used to canonicalize phone numbers into JIDs.

    The defaults describe Mexican mobile numbers (``52`` + ``1`` marker) with
    a North-American fallback for bare 10-digit numbers.
    """

    country_code: str = "52"
    mobile_marker: str = "1"
    north_american_code: str = "1"
    domestic_area_codes: Tuple[str, ...] = ("55", "56", "81", "33")

    @property
    def mobile_prefix(self) -> str:
        return f"{self.country_code}{self.mobile_marker}"


@dataclass(frozen=True)
class TemporalConfig:
    """Settings for temporal extraction and AM/PM correction."""

    timezone: str = "America/Mexico_City"
    default_language: str = "es"
    auto_detect_language: bool = True
    low_confidence: float = 0.6
    correction_penalty: float = 0.1
    default_duration_minutes: int = 60
    evening_keywords: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: {
            "es": ("tarde", "noche", "meet", "reunión", "reunion", "junta", "cita"),
            "en": ("afternoon", "evening", "tonight", "meet", "meeting", "call"),
        }
    )
    # Lunch and dinner hours from 1 to 7 mean PM.
    pm_meal_keywords: Tuple[str, ...] = (
        "comida",
        "comemos",
        "almuerzo",
        "almorzamos",
        "lunch",
        "cena",
        "cenamos",
        "dinner",
    )
    meal_durations: Dict[str, int] = field(
        default_factory=lambda: {
            "desayuno": 45,
            "desayunamos": 45,
            "breakfast": 45,
            "comida": 60,
            "comemos": 60,
            "almuerzo": 60,
            "lunch": 60,
            "cena": 90,
            "cenamos": 90,
            "dinner": 90,
        }
    )


@dataclass(frozen=True)
class ExecutorConfig:
    """Side-effect execution limits.

    ``retries`` bounds in-call retries of a sink request; ``max_attempts``
    bounds how many deliveries may re-arm a failed ledger record.
    """

    timeout_seconds: float = 10.0
    retries: int = 1
    max_attempts: int = 2


@dataclass(frozen=True)
class AuditConfig:
    """What the audit log records besides executed, failed and duplicate outcomes."""

    record_no_match: bool = False


@dataclass(frozen=True)
class AnalysisConfig:
    """Word lists used to read priority, tags and meeting hints from text.

    Lists are keyed by language code; ``tag_keywords`` maps a tag name to
    words in any language.
    """

    high_priority_words: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: {
            "es": ("urgente", "importante", "crítico", "critico", "prioritario", "inmediato", "asap"),
            "en": ("urgent", "important", "critical", "priority", "immediate", "asap"),
        }
    )
    low_priority_words: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: {
            "es": ("cuando puedas", "sin prisa", "tiempo libre", "opcional", "algún día"),
            "en": ("when you can", "no rush", "free time", "optional", "eventually", "someday"),
        }
    )
    tag_keywords: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: {
            "trabajo": (
                "trabajo", "oficina", "reunión", "reunion", "cliente", "proyecto", "empresa",
                "work", "office", "meeting", "client", "project", "business",
            ),
            "personal": (
                "personal", "familia", "casa", "compras", "médico", "medico", "salud",
                "family", "home", "shopping", "doctor", "health",
            ),
        }
    )
    virtual_meeting_words: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: {
            "es": (
                "zoom", "meet", "google meet", "teams", "skype", "videollamada", "videoconferencia",
                "virtual", "en línea", "online", "remoto", "por video", "enlace", "link",
                "standup", "scrum", "sprint", "planning",
            ),
            "en": (
                "zoom", "meet", "google meet", "teams", "skype", "video call", "video conference",
                "virtual", "online", "remote", "link", "standup", "scrum", "sprint", "planning", "sync",
            ),
        }
    )
