"""Static configuration for reactbridge.

All user-editable settings (identity prefixes, time zone, rules, sink,
logging) live in a single JSON file for quick edits without touching Python.
"""

import json
import os

from dotenv import load_dotenv

from core.config import AnalysisConfig, AuditConfig, ExecutorConfig, NormalizerConfig, TemporalConfig
from core.errors import ConfigError

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Secrets (sink API key) and the config path override come from .env.
load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

CONFIG_PATH = os.getenv("REACTBRIDGE_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise ConfigError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        try:
            return json.load(handle)
        except ValueError as exc:
            raise ConfigError(f"Config file {CONFIG_PATH} is not valid JSON: {exc}") from exc


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database (ledger, audit log, message cache).
_database = _CONFIG.get("database", {})
DB_PATH = _resolve_path(_database.get("path", "reactbridge.db"))

# Phone prefix tables. Defaults match Mexican numbering.
_identity = _CONFIG.get("identity", {})
NORMALIZER = NormalizerConfig(
    country_code=str(_identity.get("country_code", "52")),
    mobile_marker=str(_identity.get("mobile_marker", "1")),
    north_american_code=str(_identity.get("north_american_code", "1")),
    domestic_area_codes=tuple(str(code) for code in _identity.get("domestic_area_codes", ["55", "56", "81", "33"])),
)

# Time zone, language and correction thresholds for the temporal extractor.
_temporal = _CONFIG.get("temporal", {})
_temporal_defaults = TemporalConfig()
TEMPORAL = TemporalConfig(
    timezone=_temporal.get("timezone", _temporal_defaults.timezone),
    default_language=_temporal.get("default_language", _temporal_defaults.default_language),
    auto_detect_language=bool(_temporal.get("auto_detect_language", _temporal_defaults.auto_detect_language)),
    low_confidence=float(_temporal.get("low_confidence", _temporal_defaults.low_confidence)),
    correction_penalty=float(_temporal.get("correction_penalty", _temporal_defaults.correction_penalty)),
    default_duration_minutes=int(
        _temporal.get("default_duration_minutes", _temporal_defaults.default_duration_minutes)
    ),
    evening_keywords={
        lang: tuple(words)
        for lang, words in _temporal.get("evening_keywords", _temporal_defaults.evening_keywords).items()
    },
    pm_meal_keywords=tuple(_temporal.get("pm_meal_keywords", _temporal_defaults.pm_meal_keywords)),
    meal_durations={
        word: int(minutes)
        for word, minutes in _temporal.get("meal_durations", _temporal_defaults.meal_durations).items()
    },
)

# Executor limits and ledger retry cap.
_executor = _CONFIG.get("executor", {})
EXECUTOR = ExecutorConfig(
    timeout_seconds=float(_executor.get("timeout_seconds", 10.0)),
    retries=int(_executor.get("retries", 1)),
    max_attempts=int(_executor.get("max_attempts", 2)),
)

# record_no_match: whether reactions without a rule leave an audit note.
_audit = _CONFIG.get("audit", {})
AUDIT = AuditConfig(record_no_match=bool(_audit.get("record_no_match", False)))

# Word lists for task priority, tags and virtual-meeting hints. Each list
# given in config.json replaces the default for that key.
_analysis = _CONFIG.get("analysis", {})
_analysis_defaults = AnalysisConfig()


def _word_lists(name: str) -> dict:
    return {
        key: tuple(words) for key, words in _analysis.get(name, getattr(_analysis_defaults, name)).items()
    }


ANALYSIS = AnalysisConfig(
    high_priority_words=_word_lists("high_priority_words"),
    low_priority_words=_word_lists("low_priority_words"),
    tag_keywords=_word_lists("tag_keywords"),
    virtual_meeting_words=_word_lists("virtual_meeting_words"),
)

# Sink selection switches adapters without changing core logic.
# - SINK_METHOD: "http" or "dry_run"
_sink = _CONFIG.get("sink", {})
SINK_METHOD = _sink.get("method", "dry_run")
SINK_BASE_URL = _sink.get("base_url", "http://localhost:5000/api")
# The API key is read from the environment variable named here.
SINK_API_KEY_ENV = _sink.get("api_key_env", "REACTBRIDGE_SINK_API_KEY")

# Cached plain messages are only needed until someone reacts to them.
_messages = _CONFIG.get("messages", {})
MESSAGES_CACHE_ENABLED = bool(_messages.get("cache", True))
MESSAGES_TTL_DAYS = int(_messages.get("ttl_days", 7))

# Rules live in config.json by default; rules_file moves them to their own
# file. Either way the file is watched for changes.
RULES_PATH = _resolve_path(_CONFIG["rules_file"]) if _CONFIG.get("rules_file") else CONFIG_PATH

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
