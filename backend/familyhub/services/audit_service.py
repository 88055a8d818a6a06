"""Fire-and-forget audit sink for access-control changes.

Role create/update/delete, role assignment/removal and custom-permission
changes each produce one ``AuditEvent`` carrying the actor, the affected
user or role, and before/after values.  Events are appended to a daily
JSONL file and inserted into a local SQLite index.

``AuditWriter.fire_and_forget`` schedules the I/O on the default
thread-pool so the calling endpoint returns immediately.  A failed write is
logged and otherwise ignored: auditing never blocks an authorization
decision or an administrative action.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical audit event
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class AuditEvent:
    action: str
    actor_id: str | None
    actor_role: str | None = None
    family_id: str | None = None
    target_user_id: str | None = None
    target_role_id: str | None = None
    before: dict | None = None
    after: dict | None = None
    id: UUID = dataclasses.field(default_factory=uuid4)
    timestamp: datetime = dataclasses.field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "family_id": self.family_id,
            "target_user_id": self.target_user_id,
            "target_role_id": self.target_role_id,
            "before": self.before,
            "after": self.after,
        }

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


class AuditSink(Protocol):
    def fire_and_forget(self, event: AuditEvent) -> None: ...


# ---------------------------------------------------------------------------
# JSONL + SQLite writer
# ---------------------------------------------------------------------------


class AuditWriter:
    """Appends events to ``<base>/jsonl/YYYY-MM-DD.jsonl`` and ``<base>/audit.db``."""

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)
        self.jsonl_dir = self.base_path / "jsonl"
        self.sqlite_path = self.base_path / "audit.db"
        self._pending: set[asyncio.Task] = set()

        self.jsonl_dir.mkdir(parents=True, exist_ok=True)
        self._init_sqlite()

    # ---- SQLite setup ----

    def _init_sqlite(self) -> None:
        conn = sqlite3.connect(str(self.sqlite_path))
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS access_audit_events (
                    id             TEXT PRIMARY KEY,
                    timestamp      TEXT NOT NULL,
                    action         TEXT NOT NULL,
                    actor_id       TEXT,
                    actor_role     TEXT,
                    family_id      TEXT,
                    target_user_id TEXT,
                    target_role_id TEXT,
                    before_json    TEXT,
                    after_json     TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_aae_timestamp "
                "ON access_audit_events(timestamp)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_aae_action "
                "ON access_audit_events(action)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_aae_family "
                "ON access_audit_events(family_id, timestamp)"
            )
            conn.commit()
        finally:
            conn.close()

    def _get_jsonl_path(self, dt: datetime) -> Path:
        return self.jsonl_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    # ---- Sync write (runs in thread) ----

    def write_sync(self, event: AuditEvent) -> None:
        jsonl_path = self._get_jsonl_path(event.timestamp)
        with open(jsonl_path, "a", encoding="utf-8") as f:
            f.write(event.to_json_line() + "\n")

        conn = sqlite3.connect(str(self.sqlite_path))
        try:
            conn.execute(
                """INSERT OR IGNORE INTO access_audit_events
                   (id, timestamp, action, actor_id, actor_role, family_id,
                    target_user_id, target_role_id, before_json, after_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(event.id),
                    event.timestamp.isoformat(),
                    event.action,
                    event.actor_id,
                    event.actor_role,
                    event.family_id,
                    event.target_user_id,
                    event.target_role_id,
                    json.dumps(event.before, default=str) if event.before is not None else None,
                    json.dumps(event.after, default=str) if event.after is not None else None,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    # ---- Async / fire-and-forget ----

    async def write_async(self, event: AuditEvent) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.write_sync, event)

    def fire_and_forget(self, event: AuditEvent) -> None:
        """Schedule the write without awaiting.  Failures are logged only."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (scripts, shutdown): write inline.
            try:
                self.write_sync(event)
            except Exception:
                logger.exception("Audit write failed (sync fallback)")
            return
        task = loop.create_task(self._safe_write(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _safe_write(self, event: AuditEvent) -> None:
        try:
            await self.write_async(event)
        except Exception:
            logger.exception("Audit write failed for event %s", event.id)
