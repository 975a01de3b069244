"""Activity log for taskmux.

Every reconciliation step writes a JSON line to ``activity.jsonl`` in the
taskmux home directory. The dashboard never reads it back; it exists so a
user can run ``taskmux logs`` after something odd happened to their panes.

Event naming: ``<component>.<step>``, e.g. ``join.agent_joined`` or
``break.pane_parked``.
"""

from __future__ import annotations

import json
import time
from collections import deque
from pathlib import Path
from typing import Any

from taskmux.config import ensure_home, get_settings

LEVELS = ("debug", "info", "warn", "error")


def _log_path(path: Path | None) -> Path:
    if path is not None:
        return path
    settings = get_settings()
    ensure_home(settings)
    return settings.activity_log


def log_activity(
    event_type: str,
    details: dict[str, Any] | None = None,
    level: str = "info",
    task_id: int | None = None,
    path: Path | None = None,
) -> None:
    """Append an event to the activity log.

    Args:
        event_type: Dotted event name (``start.window_created``)
        details: Extra JSON-serialisable fields
        level: One of debug, info, warn, error
        task_id: Task the event concerns, if any
        path: Override the log file (tests)
    """
    entry = {
        "timestamp": time.time(),
        "time_str": time.strftime("%H:%M:%S"),
        "level": level,
        "event": event_type,
        "task_id": task_id,
        **(details or {}),
    }
    try:
        log_file = _log_path(path)
        with open(log_file, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError:
        pass  # Don't fail if logging fails


def read_activity_log(
    max_entries: int = 50,
    task_id: int | None = None,
    min_level: str = "debug",
    path: Path | None = None,
) -> list[dict]:
    """Read recent entries from the activity log.

    Args:
        max_entries: Maximum number of entries to return
        task_id: Optional filter by task
        min_level: Drop entries below this level
        path: Override the log file (tests)
    """
    log_file = _log_path(path)
    if not log_file.exists():
        return []

    threshold = LEVELS.index(min_level) if min_level in LEVELS else 0
    entries: deque[dict] = deque(maxlen=max_entries)
    with open(log_file, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if task_id is not None and entry.get("task_id") != task_id:
                continue
            level = entry.get("level", "info")
            if level in LEVELS and LEVELS.index(level) < threshold:
                continue
            entries.append(entry)

    return list(entries)


def clear_activity_log(path: Path | None = None) -> None:
    """Remove the activity log file."""
    log_file = _log_path(path)
    if log_file.exists():
        log_file.unlink()
