"""Data models for taskmux."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel


class TaskStatus(str, Enum):
    """Lifecycle status of a task (owned by the task store)."""

    BACKLOG = "backlog"  # Created but not yet started
    QUEUED = "queued"  # Waiting to be processed
    PROCESSING = "processing"  # Currently being executed
    BLOCKED = "blocked"  # Needs input/clarification
    DONE = "done"
    ARCHIVED = "archived"


# Statuses for which opening the detail view may start an agent on its own
AUTO_START_STATUSES = frozenset({TaskStatus.QUEUED, TaskStatus.PROCESSING, TaskStatus.BLOCKED})


class LogKind(str, Enum):
    """Kind of a task audit-log line."""

    SYSTEM = "system"
    ERROR = "error"
    OUTPUT = "output"


class Task(BaseModel):
    """A unit of work executed by an agent.

    The last four fields are owned by the reconciliation engine and persisted
    so a reopened view can reattach by identity instead of by pane position.
    """

    id: int
    title: str
    body: str = ""
    status: TaskStatus = TaskStatus.BACKLOG
    agent_kind: str = "claude"
    continuation_token: str = ""
    workspace_path: str = ""
    dangerous_mode: bool = False
    daemon_session: str = ""
    canonical_window_id: str = ""
    agent_pane_id: str = ""
    shell_pane_id: str = ""

    @property
    def can_auto_start(self) -> bool:
        return self.status in AUTO_START_STATUSES


def window_name(task_id: int) -> str:
    """Canonical daemon window name for a task."""
    return f"task-{task_id}"


def hidden_shell_window_name(task_id: int) -> str:
    """Window that holds a task's companion shell while it is hidden."""
    return f"task-{task_id}-shell"


def round_percent(part: int, whole: int) -> int:
    """Return ``part / whole`` as a percentage rounded half-up to an int.

    Truncating here makes saved layout defaults creep down by one point on
    every task switch, so this always rounds to nearest.
    """
    if whole <= 0 or part < 0:
        return 0
    return (part * 200 + whole) // (2 * whole)


@dataclass(frozen=True)
class WindowRef:
    """A live daemon window holding a task's agent."""

    session_name: str
    window_id: str


@dataclass(frozen=True)
class PaneBinding:
    """Panes currently joined into the foreground session."""

    control_pane_id: str
    agent_pane_id: str
    shell_pane_id: str | None = None


class JoinState(str, Enum):
    DETACHED = "detached"
    JOINING = "joining"
    JOINED = "joined"
    FAILED = "failed"


_view_ids = itertools.count(1)


@dataclass
class ViewInstance:
    """Transient state of one open detail view."""

    task: Task
    focus_agent_on_join: bool = False
    view_id: int = field(default_factory=lambda: next(_view_ids))
    state: JoinState = JoinState.DETACHED
    loading: bool = False
    error: str | None = None
    focused: bool = True
    binding: PaneBinding | None = None
    window: WindowRef | None = None
    shell_hidden: bool = False
    # Percentages requested at join time and measured right after it
    applied_height: int = 0
    applied_width: int = 0
    baseline_height: int = 0
    baseline_width: int = 0
    spinner_frame: int = 0
    memory_mb: int = 0
    position: tuple[int, int] = (0, 0)

    @property
    def failed(self) -> bool:
        return self.state is JoinState.FAILED

    @property
    def joined(self) -> bool:
        return self.binding is not None

    def mark_failed(self, reason: str) -> None:
        """Stop all further join attempts for this view."""
        self.state = JoinState.FAILED
        self.loading = False
        self.error = reason
