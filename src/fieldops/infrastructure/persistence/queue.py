"""
Durable queue adapters for deferred actions.

Ids auto-increment and are never reused, so id order is enqueue order.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

from fieldops.domain.interfaces import ActionQueueInterface
from fieldops.domain.models import QueuedAction, QueuedActionStatus, utc_now


class InMemoryActionQueue(ActionQueueInterface):
    """Simple in-memory queue for testing."""

    def __init__(self) -> None:
        self._items: dict[int, QueuedAction] = {}
        self._next_id = 1

    def enqueue(self, action: str, payload: dict[str, Any]) -> QueuedAction:
        item = QueuedAction(
            action_id=self._next_id,
            action=action,
            payload=json.loads(json.dumps(payload)),
            created_at=utc_now().isoformat(),
        )
        self._items[item.action_id] = item
        self._next_id += 1
        return item

    def list_all(self) -> list[QueuedAction]:
        return [self._items[k] for k in sorted(self._items)]

    def get(self, action_id: int) -> QueuedAction | None:
        return self._items.get(action_id)

    def delete(self, action_id: int) -> None:
        self._items.pop(action_id, None)

    def record_failure(
        self, action_id: int, error: str, dead_letter: bool = False
    ) -> QueuedAction:
        if action_id not in self._items:
            raise KeyError(f"Queued action not found: {action_id}")
        item = self._items[action_id]
        updated = replace(
            item,
            attempts=item.attempts + 1,
            last_error=error,
            status=QueuedActionStatus.DEAD_LETTER if dead_letter else item.status,
        )
        self._items[action_id] = updated
        return updated

    def reset(self, action_id: int) -> QueuedAction:
        if action_id not in self._items:
            raise KeyError(f"Queued action not found: {action_id}")
        updated = replace(
            self._items[action_id], attempts=0, status=QueuedActionStatus.PENDING
        )
        self._items[action_id] = updated
        return updated


class SQLiteActionQueue(ActionQueueInterface):
    """
    Queue persisted in a local SQLite file.

    Survives process restarts. Each operation runs in its own transaction,
    and an ``AUTOINCREMENT`` key guarantees ids are never reused after a
    delete.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.migrate()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection committed on success, rolled back on error, always closed."""
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def migrate(self) -> None:
        """Create the queue table if it does not already exist."""
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS queued_actions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    status TEXT NOT NULL DEFAULT 'pending'
                )
                """)

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> QueuedAction:
        return QueuedAction(
            action_id=int(row["id"]),
            action=row["action"],
            payload=json.loads(row["payload"]),
            created_at=row["created_at"],
            attempts=int(row["attempts"]),
            last_error=row["last_error"],
            status=QueuedActionStatus(row["status"]),
        )

    def enqueue(self, action: str, payload: dict[str, Any]) -> QueuedAction:
        created_at = utc_now().isoformat()
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO queued_actions (action, payload, created_at) VALUES (?, ?, ?)",
                (action, json.dumps(payload), created_at),
            )
            action_id = cursor.lastrowid
        return QueuedAction(
            action_id=int(action_id),  # type: ignore[arg-type]
            action=action,
            payload=json.loads(json.dumps(payload)),
            created_at=created_at,
        )

    def list_all(self) -> list[QueuedAction]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM queued_actions ORDER BY id ASC").fetchall()
        return [self._row_to_action(row) for row in rows]

    def get(self, action_id: int) -> QueuedAction | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM queued_actions WHERE id = ?", (action_id,)
            ).fetchone()
        return self._row_to_action(row) if row is not None else None

    def delete(self, action_id: int) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM queued_actions WHERE id = ?", (action_id,))

    def record_failure(
        self, action_id: int, error: str, dead_letter: bool = False
    ) -> QueuedAction:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE queued_actions
                SET attempts = attempts + 1,
                    last_error = ?,
                    status = CASE WHEN ? THEN 'dead_letter' ELSE status END
                WHERE id = ?
                """,
                (error, 1 if dead_letter else 0, action_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Queued action not found: {action_id}")
        item = self.get(action_id)
        if item is None:
            raise KeyError(f"Queued action removed during update: {action_id}")
        return item

    def reset(self, action_id: int) -> QueuedAction:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "UPDATE queued_actions SET attempts = 0, status = 'pending' WHERE id = ?",
                (action_id,),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Queued action not found: {action_id}")
        item = self.get(action_id)
        if item is None:
            raise KeyError(f"Queued action removed during update: {action_id}")
        return item
