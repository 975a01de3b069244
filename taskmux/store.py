"""SQLite task store.

Only the parts of the task store the pane engine touches live here: task
lookup, the four reconciliation-owned identifiers, the audit log and the
key/value settings table used for layout preferences.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from taskmux.models import LogKind, Task, TaskStatus

SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    body TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'backlog',
    agent_kind TEXT NOT NULL DEFAULT 'claude',
    continuation_token TEXT NOT NULL DEFAULT '',
    workspace_path TEXT NOT NULL DEFAULT '',
    dangerous_mode INTEGER NOT NULL DEFAULT 0,
    daemon_session TEXT NOT NULL DEFAULT '',
    canonical_window_id TEXT NOT NULL DEFAULT '',
    agent_pane_id TEXT NOT NULL DEFAULT '',
    shell_pane_id TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS task_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL,
    kind TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_task_logs_task ON task_logs(task_id);
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

TASK_COLUMNS = (
    "id, title, body, status, agent_kind, continuation_token, workspace_path, "
    "dangerous_mode, daemon_session, canonical_window_id, agent_pane_id, shell_pane_id"
)


class StoreError(Exception):
    """Raised when the task store cannot satisfy a request."""


@dataclass
class TaskLog:
    id: int
    task_id: int
    kind: LogKind
    text: str
    created_at: float


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        title=row["title"],
        body=row["body"],
        status=TaskStatus(row["status"]),
        agent_kind=row["agent_kind"],
        continuation_token=row["continuation_token"],
        workspace_path=row["workspace_path"],
        dangerous_mode=bool(row["dangerous_mode"]),
        daemon_session=row["daemon_session"],
        canonical_window_id=row["canonical_window_id"],
        agent_pane_id=row["agent_pane_id"],
        shell_pane_id=row["shell_pane_id"],
    )


class TaskStore:
    """Thread-safe SQLite store shared by the UI loop and background units."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock, self._conn:
            self._conn.executescript(SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock, self._conn:
            return self._conn.execute(sql, params)

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # -- tasks ---------------------------------------------------------------

    def add_task(
        self,
        title: str,
        body: str = "",
        status: TaskStatus = TaskStatus.BACKLOG,
        agent_kind: str = "claude",
        workspace_path: str = "",
        continuation_token: str = "",
        dangerous_mode: bool = False,
    ) -> Task:
        cur = self._execute(
            "INSERT INTO tasks (title, body, status, agent_kind, workspace_path, "
            "continuation_token, dangerous_mode) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (title, body, TaskStatus(status).value, agent_kind, workspace_path,
             continuation_token, int(dangerous_mode)),
        )
        task = self.get_task(cur.lastrowid)
        if task is None:
            raise StoreError(f"task {cur.lastrowid} vanished after insert")
        return task

    def get_task(self, task_id: int) -> Task | None:
        rows = self._query(f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,))
        return _row_to_task(rows[0]) if rows else None

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        if status is None:
            rows = self._query(f"SELECT {TASK_COLUMNS} FROM tasks ORDER BY id")
        else:
            rows = self._query(
                f"SELECT {TASK_COLUMNS} FROM tasks WHERE status = ? ORDER BY id",
                (TaskStatus(status).value,),
            )
        return [_row_to_task(r) for r in rows]

    def adjacent_task_id(self, task_id: int, step: int) -> int | None:
        """Id of the next (step > 0) or previous (step < 0) non-archived task."""
        if step > 0:
            sql = "SELECT id FROM tasks WHERE id > ? AND status != 'archived' ORDER BY id ASC LIMIT 1"
        else:
            sql = "SELECT id FROM tasks WHERE id < ? AND status != 'archived' ORDER BY id DESC LIMIT 1"
        rows = self._query(sql, (task_id,))
        return rows[0]["id"] if rows else None

    def update_task_status(self, task_id: int, status: TaskStatus) -> None:
        self._execute("UPDATE tasks SET status = ? WHERE id = ?", (TaskStatus(status).value, task_id))

    def update_task_window_id(self, task_id: int, window_id: str, session_name: str | None = None) -> None:
        """Persist the canonical window id (and its daemon session, when known)."""
        if session_name is None:
            self._execute("UPDATE tasks SET canonical_window_id = ? WHERE id = ?", (window_id, task_id))
        else:
            self._execute(
                "UPDATE tasks SET canonical_window_id = ?, daemon_session = ? WHERE id = ?",
                (window_id, session_name, task_id),
            )

    def update_task_pane_ids(self, task_id: int, agent_pane_id: str, shell_pane_id: str) -> None:
        self._execute(
            "UPDATE tasks SET agent_pane_id = ?, shell_pane_id = ? WHERE id = ?",
            (agent_pane_id or "", shell_pane_id or "", task_id),
        )

    def find_task_by_pane(self, pane_id: str) -> tuple[Task, str] | None:
        """Find the task owning ``pane_id``; returns ``(task, "agent"|"shell")``."""
        if not pane_id:
            return None
        rows = self._query(
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE agent_pane_id = ? OR shell_pane_id = ? "
            "ORDER BY id DESC LIMIT 1",
            (pane_id, pane_id),
        )
        if not rows:
            return None
        task = _row_to_task(rows[0])
        return task, "agent" if task.agent_pane_id == pane_id else "shell"

    # -- audit log -----------------------------------------------------------

    def append_task_log(self, task_id: int, kind: LogKind | str, text: str) -> None:
        self._execute(
            "INSERT INTO task_logs (task_id, kind, text, created_at) VALUES (?, ?, ?, ?)",
            (task_id, LogKind(kind).value, text, time.time()),
        )

    def get_task_logs(self, task_id: int, limit: int = 100) -> list[TaskLog]:
        rows = self._query(
            "SELECT id, task_id, kind, text, created_at FROM task_logs WHERE task_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (task_id, limit),
        )
        return [
            TaskLog(r["id"], r["task_id"], LogKind(r["kind"]), r["text"], r["created_at"])
            for r in reversed(rows)
        ]

    # -- settings ------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        rows = self._query("SELECT value FROM settings WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def set_setting(self, key: str, value: str) -> None:
        self._execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
