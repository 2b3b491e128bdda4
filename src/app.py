"""Application entry point for the reactbridge engine."""

from __future__ import annotations

import argparse
import asyncio
from collections import Counter
from datetime import datetime
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import IO, Iterator, Optional
from zoneinfo import ZoneInfo

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.action_formatting import format_record
from adapters.dateparser_recognizer import DateparserRecognizer
from adapters.dry_run_sink import DryRunSink
from adapters.http_sink import HttpActionSink
from adapters.rule_store import JsonRuleStore
from adapters.sqlite_storage import SQLiteStorage
from core.errors import ConfigError, SinkFailure
from core.executor import ActionExecutor
from core.identity import normalize
from core.processor import ReactionProcessor
from core.temporal import TemporalExtractor
from pipeline import WebhookPipeline

NAME = "REACTBRIDGE"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        # stdout carries command output; logs go to stderr.
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/reactbridge.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _build_sink():
    # Select the sink adapter based on configuration to keep the core
    # processor independent from delivery details.
    if settings.SINK_METHOD == "http":
        api_key = os.getenv(settings.SINK_API_KEY_ENV)
        return HttpActionSink(
            base_url=settings.SINK_BASE_URL,
            api_key=api_key,
            timeout=settings.EXECUTOR.timeout_seconds,
        )
    if settings.SINK_METHOD == "dry_run":
        return DryRunSink()
    raise ConfigError("sink.method must be 'http' or 'dry_run'")


def _read_payloads(stream: IO[str]) -> Iterator[dict]:
    logger = logging.getLogger(__name__)
    for number, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except ValueError as exc:
            logger.warning("Skipping line %s: not valid JSON (%s)", number, exc)


async def _ingest_all(pipeline: WebhookPipeline, stream: IO[str]) -> Counter:
    logger = logging.getLogger(__name__)
    outcomes: Counter = Counter()
    for payload in _read_payloads(stream):
        try:
            result = await pipeline.ingest(payload)
        except SinkFailure as exc:
            # The record is marked failed; a redelivery may retry it.
            logger.error("%s", exc)
            outcomes["failed"] += 1
            continue
        outcomes[result.outcome.value if result else "ignored"] += 1
    return outcomes


def _run(path: Optional[str]) -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting reactbridge")

    storage = _open_storage()
    if settings.MESSAGES_CACHE_ENABLED:
        removed = storage.cleanup_messages(settings.MESSAGES_TTL_DAYS)
        logger.info("Message cache cleanup removed %s messages", removed)

    # Rules are watched on disk so edits apply without a restart.
    rule_store = JsonRuleStore(settings.RULES_PATH, settings.NORMALIZER)
    logger.info("%s rules are loaded", len(rule_store.snapshot()))

    sink = _build_sink()
    logger.info("Selected sink - %s", settings.SINK_METHOD)

    processor = ReactionProcessor(
        rule_store=rule_store,
        ledger=storage,
        audit=storage,
        executor=ActionExecutor(sink, settings.EXECUTOR),
        extractor=TemporalExtractor(DateparserRecognizer(), settings.TEMPORAL),
        normalizer_config=settings.NORMALIZER,
        executor_config=settings.EXECUTOR,
        audit_config=settings.AUDIT,
        analysis_config=settings.ANALYSIS,
    )
    pipeline = WebhookPipeline(processor, storage, cache_messages=settings.MESSAGES_CACHE_ENABLED)

    async def _run_ingest(stream: IO[str]) -> Counter:
        try:
            return await _ingest_all(pipeline, stream)
        finally:
            if isinstance(sink, HttpActionSink):
                await sink.aclose()

    if path and path != "-":
        with open(path, "r", encoding="utf-8") as handle:
            outcomes = asyncio.run(_run_ingest(handle))
    else:
        outcomes = asyncio.run(_run_ingest(sys.stdin))

    summary = ", ".join(f"{name}={count}" for name, count in sorted(outcomes.items())) or "nothing"
    logger.info("Ingest complete: %s", summary)
    print(summary)


def _pending() -> None:
    storage = _open_storage()
    records = storage.list_pending()
    if not records:
        print("No pending or failed actions.")
        return
    for record in records:
        print(format_record(record))


def _normalize(values: list[str]) -> None:
    for value in values:
        identity = normalize(value, settings.NORMALIZER)
        print(f"{value} -> {identity.jid if not identity.is_empty else '(invalid)'}")


def _extract(text: str, anchor: Optional[str]) -> None:
    zone = ZoneInfo(settings.TEMPORAL.timezone)
    if anchor:
        anchor_time = datetime.fromisoformat(anchor)
        if anchor_time.tzinfo is None:
            anchor_time = anchor_time.replace(tzinfo=zone)
    else:
        anchor_time = datetime.now(zone)

    extractor = TemporalExtractor(DateparserRecognizer(), settings.TEMPORAL)
    expression = extractor.extract(text, anchor_time)
    if expression is None:
        print("No date or time found.")
        return
    print(f"span:       {expression.raw_span}")
    print(f"start:      {expression.resolved_start.isoformat()}")
    if expression.resolved_end is not None:
        print(f"end:        {expression.resolved_end.isoformat()}")
    print(f"all day:    {expression.all_day}")
    print(f"corrected:  {expression.corrected}")
    print(f"confidence: {expression.confidence:.2f}")
    if expression.location:
        print(f"location:   {expression.location}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="reactbridge")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Ingest webhook payloads (JSON lines)")
    run_parser.add_argument("file", nargs="?", help="JSON-lines file; stdin when omitted or '-'")
    subparsers.add_parser("pending", help="List pending and failed actions")
    normalize_parser = subparsers.add_parser("normalize", help="Print canonical JIDs for phone numbers")
    normalize_parser.add_argument("values", nargs="+")
    extract_parser = subparsers.add_parser("extract", help="Show the date/time found in a text")
    extract_parser.add_argument("text")
    extract_parser.add_argument("--anchor", help="ISO-8601 reference time (default: now)")

    args = parser.parse_args(argv)
    if args.command == "pending":
        _pending()
        return
    if args.command == "normalize":
        _normalize(args.values)
        return
    if args.command == "extract":
        _extract(args.text, args.anchor)
        return
    if args.command == "run":
        _run(args.file)
        return
    parser.print_help()


if __name__ == "__main__":
    main()
