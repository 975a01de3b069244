"""Session Starter: find-or-create the daemon session and launch an agent window."""

from __future__ import annotations

import os

from libtmux.constants import PaneDirection

from taskmux.activity import log_activity
from taskmux.config import Settings
from taskmux.executors import Executor, build_prompt, get_executor
from taskmux.locator import WindowLocator
from taskmux.models import LogKind, Task, WindowRef, window_name
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxError, TmuxManager

PLACEHOLDER_WINDOW = "_placeholder"
# A session with no live window exits immediately; this keeps it around
PLACEHOLDER_COMMAND = "tail -f /dev/null"
SHELL_TITLE = "Shell"


class StartError(Exception):
    """The agent window could not be created."""


def user_shell() -> str:
    return os.environ.get("SHELL") or "/bin/sh"


def task_workdir(task: Task) -> str:
    if task.workspace_path and os.path.isdir(task.workspace_path):
        return task.workspace_path
    return os.path.expanduser("~")


class SessionStarter:
    """Launches (or resumes) a task's agent inside a daemon-session window.

    All mutations are create-or-find: other processes (the executor
    supervisor, another dashboard) may be touching the same daemon session.
    """

    def __init__(
        self,
        tmux: TmuxManager,
        store: TaskStore,
        settings: Settings,
        locator: WindowLocator | None = None,
    ):
        self.tmux = tmux
        self.store = store
        self.settings = settings
        self.locator = locator or WindowLocator(tmux, store, settings)

    def find_daemon_session(self) -> str | None:
        for name in self.tmux.list_sessions():
            if name.startswith(self.settings.daemon_prefix):
                return name
        return None

    def ensure_daemon_session(self) -> str:
        """Return an existing daemon session, creating one if there is none."""
        existing = self.find_daemon_session()
        if existing:
            return existing

        name = self.settings.daemon_session_name
        log_activity("start.create_session", {"session": name})
        try:
            self.tmux.new_session(name, PLACEHOLDER_WINDOW, PLACEHOLDER_COMMAND)
        except TmuxError as e:
            # Lost a race with another process creating it
            existing = self.find_daemon_session()
            if existing:
                return existing
            raise StartError(f"could not create daemon session {name}: {e.message}") from e
        return name

    def start(self, task: Task, executor: Executor | None = None) -> WindowRef:
        """Start or resume the task's agent; returns its daemon window.

        Raises:
            StartError: tmux refused, or the agent exited before its window appeared.
        """
        existing = self.locator.find_by_name(task)
        if existing is not None:
            log_activity("start.reuse_window", {"window_id": existing.window_id}, task_id=task.id)
            self.locator.remember(task, existing)
            return existing

        executor = executor or get_executor(task.agent_kind, self.settings)
        session = self.ensure_daemon_session()
        workdir = task_workdir(task)

        token = task.continuation_token
        if token:
            command = executor.build_command(task, token, "")
            self.store.append_task_log(task.id, LogKind.SYSTEM, f"Reconnecting to session {token}")
        else:
            command = executor.build_command(task, "", build_prompt(task))
            self.store.append_task_log(task.id, LogKind.SYSTEM, f"Starting {executor.name()} session")

        name = window_name(task.id)
        log_activity("start.create_window", {"session": session, "window": name, "workdir": workdir},
                     task_id=task.id)
        try:
            window_id, agent_pane = self.tmux.create_window(session, name, workdir, command)
        except TmuxError as e:
            raise StartError(f"failed to create agent window: {e.message}") from e

        if self.tmux.window_info(window_id) is None:
            raise StartError(f"{executor.name()} exited before its window was ready")

        shell_pane = ""
        try:
            shell_pane = self.tmux.split_pane(agent_pane, PaneDirection.Right, None, workdir, user_shell())
        except TmuxError as e:
            log_activity("start.shell_failed", {"error": str(e)}, level="warn", task_id=task.id)

        try:
            self.tmux.set_pane_title(agent_pane, executor.name())
            if shell_pane:
                self.tmux.set_pane_title(shell_pane, SHELL_TITLE)
        except TmuxError as e:
            log_activity("start.title_failed", {"error": str(e)}, level="debug", task_id=task.id)

        window = WindowRef(session, window_id)
        self.locator.remember(task, window)
        task.agent_pane_id = agent_pane
        task.shell_pane_id = shell_pane
        self.store.update_task_pane_ids(task.id, agent_pane, shell_pane)
        log_activity("start.done", {"window_id": window_id, "agent_pane": agent_pane,
                                    "shell_pane": shell_pane}, task_id=task.id)
        return window
