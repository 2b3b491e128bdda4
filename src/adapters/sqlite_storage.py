"""SQLite storage adapter.

Implements the core LedgerPort, AuditPort and MessageLookupPort using a
simple SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from core.models import (
    ActionKind,
    ActionRecord,
    AuditLogEntry,
    RecordStatus,
    Reservation,
    StoredMessage,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _utc_iso(value: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as text.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the ledger, audit and message ports."""

    def __init__(self, db_path: str, timeout: float = 10.0) -> None:
        self._db_path = db_path
        self._timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - action_records: one row per delivery id (the idempotency key)
        - audit_log: append-only log of processing attempts
        - messages: plain messages cached for reaction enrichment
        """

        with self._connect() as conn:
            # delivery_id is the PRIMARY KEY so reservation can be a single
            # conditional upsert instead of a read-then-write pair.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS action_records (
                    delivery_id TEXT PRIMARY KEY,
                    id TEXT NOT NULL,
                    rule_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    rendered_parameters TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 1,
                    external_id TEXT,
                    error TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    executed_at TIMESTAMP
                )
                """
            )
            # audit_log rows are never updated or deleted.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    delivery_id TEXT NOT NULL,
                    rule_id TEXT,
                    outcome TEXT NOT NULL,
                    raw_span TEXT,
                    resolved_start TIMESTAMP,
                    resolved_end TIMESTAMP,
                    confidence REAL,
                    detail TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    instance_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    chat_id TEXT,
                    sender_jid TEXT,
                    content TEXT,
                    timestamp TIMESTAMP,
                    stored_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (instance_id, message_id)
                )
                """
            )

    # Ledger

    def reserve(self, record: ActionRecord, max_attempts: int) -> Reservation:
        """Insert a pending record, or re-arm a failed one under the attempt cap."""

        now = datetime.now(timezone.utc).isoformat()
        params = json.dumps(record.rendered_parameters, default=_json_default, ensure_ascii=False)
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO action_records (
                    delivery_id, id, rule_id, kind, rendered_parameters,
                    status, attempts, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 'pending', 1, ?, ?)
                ON CONFLICT(delivery_id) DO UPDATE SET
                    id = excluded.id,
                    rule_id = excluded.rule_id,
                    kind = excluded.kind,
                    rendered_parameters = excluded.rendered_parameters,
                    status = 'pending',
                    attempts = action_records.attempts + 1,
                    error = NULL,
                    updated_at = excluded.updated_at
                WHERE action_records.status = 'failed' AND action_records.attempts < ?
                """,
                (
                    record.source_delivery_id,
                    record.id,
                    record.rule_id,
                    record.kind.value,
                    params,
                    _iso(record.created_at),
                    now,
                    max_attempts,
                ),
            )
            reserved = cur.rowcount == 1
            row = conn.execute(
                "SELECT status, attempts FROM action_records WHERE delivery_id = ?",
                (record.source_delivery_id,),
            ).fetchone()
        return Reservation(
            reserved=reserved,
            status=RecordStatus(row["status"]),
            attempts=int(row["attempts"]),
        )

    def _set_status(self, delivery_id: str, status: RecordStatus, **fields: Optional[str]) -> None:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        sql = f"UPDATE action_records SET status = ?, updated_at = ?{', ' + assignments if assignments else ''} WHERE delivery_id = ?"
        values = [status.value, datetime.now(timezone.utc).isoformat(), *fields.values(), delivery_id]
        with self._connect() as conn:
            conn.execute(sql, values)

    def mark_executed(self, delivery_id: str, external_id: str) -> None:
        self._set_status(
            delivery_id,
            RecordStatus.EXECUTED,
            external_id=external_id,
            error=None,
            executed_at=_utc_iso(datetime.now(timezone.utc)),
        )

    def mark_failed(self, delivery_id: str, error: str) -> None:
        self._set_status(delivery_id, RecordStatus.FAILED, error=error)

    def _record_from_row(self, row: sqlite3.Row) -> ActionRecord:
        return ActionRecord(
            id=row["id"],
            source_delivery_id=row["delivery_id"],
            rule_id=row["rule_id"],
            kind=ActionKind(row["kind"]),
            rendered_parameters=json.loads(row["rendered_parameters"]),
            status=RecordStatus(row["status"]),
            created_at=_parse_iso(row["created_at"]),
            attempts=int(row["attempts"]),
            external_id=row["external_id"],
            error=row["error"],
            executed_at=_parse_iso(row["executed_at"]),
        )

    def get_record(self, delivery_id: str) -> Optional[ActionRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM action_records WHERE delivery_id = ?",
                (delivery_id,),
            ).fetchone()
        return self._record_from_row(row) if row else None

    def list_pending(self) -> List[ActionRecord]:
        """Return pending and failed records, oldest first, for reconciliation."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM action_records
                WHERE status IN ('pending', 'failed')
                ORDER BY created_at
                """
            ).fetchall()
        return [self._record_from_row(row) for row in rows]

    def last_execution(self, rule_id: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT MAX(executed_at) AS last FROM action_records
                WHERE rule_id = ? AND status = 'executed'
                """,
                (rule_id,),
            ).fetchone()
        return _parse_iso(row["last"]) if row else None

    def count_executions(self, rule_id: str, since: datetime) -> int:
        """Executed records of ``rule_id`` at or after ``since``."""

        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total FROM action_records
                WHERE rule_id = ? AND status = 'executed' AND executed_at >= ?
                """,
                (rule_id, _utc_iso(since)),
            ).fetchone()
        return int(row["total"])

    # Audit

    def append(self, entry: AuditLogEntry) -> None:
        """Append an entry to the audit log."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO audit_log (
                    delivery_id,
                    rule_id,
                    outcome,
                    raw_span,
                    resolved_start,
                    resolved_end,
                    confidence,
                    detail,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.delivery_id,
                    entry.rule_id,
                    entry.outcome.value,
                    entry.raw_span,
                    _iso(entry.resolved_start),
                    _iso(entry.resolved_end),
                    entry.confidence,
                    entry.detail,
                    _iso(entry.created_at),
                ),
            )

    def audit_entries(self, delivery_id: str) -> List[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(
                "SELECT * FROM audit_log WHERE delivery_id = ? ORDER BY id",
                (delivery_id,),
            ).fetchall()

    # Messages

    def save_message(self, message: StoredMessage) -> None:
        """Upsert a plain message so reactions to it can be enriched later."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO messages (
                    instance_id, message_id, chat_id, sender_jid, content, timestamp, stored_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(instance_id, message_id) DO UPDATE SET
                    chat_id = excluded.chat_id,
                    sender_jid = excluded.sender_jid,
                    content = excluded.content,
                    timestamp = excluded.timestamp
                """,
                (
                    message.instance_id,
                    message.message_id,
                    message.chat_id,
                    message.sender_jid,
                    message.content,
                    _iso(message.timestamp),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )

    def get_message(self, instance_id: str, message_id: str) -> Optional[StoredMessage]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE instance_id = ? AND message_id = ?",
                (instance_id, message_id),
            ).fetchone()
        if row is None:
            return None
        return StoredMessage(
            instance_id=row["instance_id"],
            message_id=row["message_id"],
            chat_id=row["chat_id"] or "",
            sender_jid=row["sender_jid"] or "",
            content=row["content"] or "",
            timestamp=_parse_iso(row["timestamp"]),
        )

    def cleanup_messages(self, ttl_days: int) -> int:
        """Delete cached messages older than the TTL and return the number removed."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=ttl_days)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM messages WHERE stored_at < ?",
                (cutoff.isoformat(),),
            )
            return cur.rowcount
