"""Window Locator: find the live daemon window running a task's agent."""

from __future__ import annotations

from taskmux.activity import log_activity
from taskmux.config import Settings
from taskmux.models import Task, WindowRef, window_name
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxError, TmuxManager


class WindowLocator:
    """Resolves a task to a window, preferring the stored id over a name search."""

    def __init__(self, tmux: TmuxManager, store: TaskStore, settings: Settings):
        self.tmux = tmux
        self.store = store
        self.settings = settings

    def resolve(self, task: Task) -> WindowRef | None:
        """Return the task's window, re-persisting its id when found by name."""
        if task.canonical_window_id:
            info = self.tmux.window_info(task.canonical_window_id)
            # A stored id that now points into the foreground session is stale
            if info is not None and info.session_name != self.settings.ui_session:
                log_activity("locate.by_id", {"window_id": info.window_id}, level="debug", task_id=task.id)
                return WindowRef(info.session_name, info.window_id)
            log_activity("locate.stale_id", {"window_id": task.canonical_window_id}, level="debug", task_id=task.id)

        window = self.find_by_name(task)
        if window is None:
            log_activity("locate.not_found", task_id=task.id)
            return None

        self.remember(task, window)
        return window

    def find_by_name(self, task: Task, name: str | None = None) -> WindowRef | None:
        """Search daemon sessions for the task's canonical (or given) window name."""
        name = name or window_name(task.id)
        try:
            windows = self.tmux.list_windows(session_prefix=self.settings.daemon_prefix)
        except TmuxError as e:
            log_activity("locate.list_failed", {"error": str(e)}, level="warn", task_id=task.id)
            return None
        for info in windows:
            if info.window_name == name:
                return WindowRef(info.session_name, info.window_id)
        return None

    def remember(self, task: Task, window: WindowRef) -> None:
        """Persist a window as the task's canonical window."""
        if task.canonical_window_id == window.window_id and task.daemon_session == window.session_name:
            return
        task.canonical_window_id = window.window_id
        task.daemon_session = window.session_name
        self.store.update_task_window_id(task.id, window.window_id, window.session_name)
        log_activity("locate.remembered", {"window_id": window.window_id,
                                           "session": window.session_name}, task_id=task.id)
