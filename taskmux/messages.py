"""Messages consumed by the dashboard's single event loop.

Background units report back with exactly one of these; view state is only
ever changed while handling one.
"""

from __future__ import annotations

from dataclasses import dataclass

from taskmux.models import Task, WindowRef
from taskmux.reconciler import JoinResult


@dataclass(frozen=True)
class Message:
    pass


@dataclass(frozen=True)
class LoadingStarted(Message):
    view_id: int
    task_id: int
    request_id: int


@dataclass(frozen=True)
class JoinCompleted(Message):
    """Outcome of a start+join unit: a join result, an error, or neither when cancelled."""

    view_id: int
    task_id: int
    request_id: int
    task: Task | None = None
    result: JoinResult | None = None
    error: str | None = None
    # "start" or "join"; a failed join is terminal for the view
    stage: str = ""


@dataclass(frozen=True)
class FocusChanged(Message):
    view_id: int
    focused: bool


@dataclass(frozen=True)
class SpinnerTick(Message):
    view_id: int


@dataclass(frozen=True)
class ReconcileTick(Message):
    view_id: int


@dataclass(frozen=True)
class FocusTick(Message):
    view_id: int


@dataclass(frozen=True)
class DriftChecked(Message):
    view_id: int
    agent_pane_id: str
    agent_present: bool
    window: WindowRef | None = None
    memory_mb: int = 0
    shell_busy: bool = False


@dataclass(frozen=True)
class KeyPressed(Message):
    key: str


@dataclass(frozen=True)
class UnitFailed(Message):
    unit: str
    error: str
