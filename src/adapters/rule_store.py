"""Rule store adapters.

``JsonRuleStore`` reloads its file when the modification time changes, so
rules can be edited while the engine runs. Every ``snapshot()`` returns an
immutable tuple; callers hold on to it for the whole event.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Iterable, Optional, Tuple

from core.config import NormalizerConfig
from core.errors import ConfigError
from core.identity import DEFAULT_CONFIG
from core.rules_engine import Rule, build_rules

LOGGER = logging.getLogger(__name__)


class StaticRuleStore:
    """Fixed rule table, compiled once."""

    def __init__(self, rules: Iterable[Rule]) -> None:
        self._rules: Tuple[Rule, ...] = tuple(sorted(rules, key=lambda r: -r.priority))

    def snapshot(self) -> Tuple[Rule, ...]:
        return self._rules


def _rules_section(data: Any) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        rules = data.get("rules", [])
        if isinstance(rules, list):
            return rules
    raise ConfigError("rules file must be a list or an object with a 'rules' list")


class JsonRuleStore:
    """Rules loaded from a JSON file (a list, or an object with ``rules``)."""

    def __init__(self, path: str, config: NormalizerConfig = DEFAULT_CONFIG) -> None:
        self._path = path
        self._config = config
        self._lock = threading.Lock()
        self._mtime: Optional[float] = None
        self._rules: Tuple[Rule, ...] = ()
        self._load(initial=True)

    @property
    def path(self) -> str:
        return self._path

    def _read(self) -> Tuple[Rule, ...]:
        with open(self._path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        return tuple(build_rules(_rules_section(data), self._config))

    def _load(self, initial: bool = False) -> None:
        try:
            mtime = os.stat(self._path).st_mtime
        except FileNotFoundError as exc:
            if initial:
                raise ConfigError(f"Rules file not found: {self._path}") from exc
            LOGGER.warning("Rules file %s disappeared; keeping %s rules", self._path, len(self._rules))
            return

        if mtime == self._mtime:
            return

        try:
            rules = self._read()
        except (OSError, ValueError, ConfigError) as exc:
            if initial:
                raise ConfigError(f"Could not load rules from {self._path}: {exc}") from exc
            LOGGER.error("Rules reload failed, keeping previous table: %s", exc)
            self._mtime = mtime
            return

        self._rules = rules
        self._mtime = mtime
        LOGGER.info("%s rules are loaded from %s", len(rules), self._path)

    def snapshot(self) -> Tuple[Rule, ...]:
        with self._lock:
            self._load()
            return self._rules
