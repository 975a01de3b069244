"""Pane Join/Break Reconciler.

Moves a task's agent (and companion shell) pane between its daemon window
and the foreground dashboard session.

Layout while joined::

    +--------------------------------+
    | control pane (dashboard)  20%  |
    +-------------------+------------+
    | agent pane        | shell 50%  |
    +-------------------+------------+

Panes are only ever moved, never killed, while their process is alive.
Every failure on the way back out degrades to leaving a pane where it is.
"""

from __future__ import annotations

from dataclasses import dataclass

from libtmux.constants import PaneDirection

from taskmux.activity import log_activity
from taskmux.config import Settings
from taskmux.executors import UnknownExecutorError, get_executor, task_environment
from taskmux.layout import Dimensions, DimensionTracker
from taskmux.locator import WindowLocator
from taskmux.models import LogKind, PaneBinding, Task, WindowRef, window_name
from taskmux.starter import SHELL_TITLE, SessionStarter, StartError, task_workdir, user_shell
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxError, TmuxManager

CONTROL_IDLE_TITLE = "Tasks"

# Keys the dashboard reads to move to the previous/next task
JUMP_PREV_KEY = "["
JUMP_NEXT_KEY = "]"

PANE_CYCLE_BINDINGS = {
    "S-Down": "select-pane -t :.+",
    "S-Right": "select-pane -t :.+",
    "S-Up": "select-pane -t :.-",
    "S-Left": "select-pane -t :.-",
}
TASK_JUMP_BINDINGS = {
    "M-S-Up": JUMP_PREV_KEY,
    "M-S-Down": JUMP_NEXT_KEY,
}

JOINED_STYLE = {
    "status-right": " S-arrows: switch pane  M-S-arrows: switch task ",
    "status-right-length": "80",
    "pane-border-lines": "heavy",
    "pane-border-indicators": "arrows",
    "window-style": "fg=#6b7280",
    "window-active-style": "fg=terminal",
}
DETACHED_STYLE = {
    "status-right": " ",
    "pane-border-lines": "single",
    "pane-border-indicators": "off",
    "window-style": "default",
    "window-active-style": "default",
}


class JoinError(Exception):
    """A join could not complete; the view must not retry it."""


@dataclass
class JoinResult:
    binding: PaneBinding
    window: WindowRef
    shell_hidden: bool
    # Shell id kept for a hidden shell that was not attached
    retained_shell_pane_id: str
    applied: Dimensions
    baseline: Dimensions


@dataclass
class BreakResult:
    agent_pane_id: str
    shell_pane_id: str
    window: WindowRef | None


def identify_panes(task: Task, pane_ids: list[str]) -> tuple[str, str | None]:
    """Pick the agent and shell panes of a daemon window.

    Persisted ids win when they are still in the window. Otherwise fall back
    to position (first pane is the agent), which can be wrong if something
    else reordered the window's panes.
    """
    agent = task.agent_pane_id if task.agent_pane_id in pane_ids else pane_ids[0]
    if task.shell_pane_id in pane_ids and task.shell_pane_id != agent:
        return agent, task.shell_pane_id
    others = [p for p in pane_ids if p != agent]
    return agent, others[0] if others else None


def agent_title(name: str, memory_mb: int = 0) -> str:
    if memory_mb > 0:
        return f"{name} ({memory_mb} MB)"
    return name


def shell_context(task: Task, session_id: str) -> str:
    return f"export {task_environment(task, session_id)}"


class PaneReconciler:
    """Joins and breaks a task's panes into the foreground session."""

    def __init__(
        self,
        tmux: TmuxManager,
        store: TaskStore,
        settings: Settings,
        locator: WindowLocator | None = None,
        starter: SessionStarter | None = None,
        dims: DimensionTracker | None = None,
    ):
        self.tmux = tmux
        self.store = store
        self.settings = settings
        self.locator = locator or WindowLocator(tmux, store, settings)
        self.starter = starter or SessionStarter(tmux, store, settings, self.locator)
        self.dims = dims or DimensionTracker(tmux, store, settings)

    def _quietly(self, event: str, fn, *args) -> bool:
        """Run a cosmetic tmux call; failures are logged, not raised."""
        try:
            fn(*args)
            return True
        except TmuxError as e:
            log_activity(event, {"error": str(e)}, level="debug")
            return False

    def agent_name(self, task: Task) -> str:
        try:
            return get_executor(task.agent_kind, self.settings).name()
        except UnknownExecutorError:
            return "Agent"

    # -- join ----------------------------------------------------------------

    def join(self, task: Task, window: WindowRef, control_pane: str, memory_mb: int = 0) -> JoinResult:
        """Bring the task's panes from ``window`` under ``control_pane``.

        Raises:
            JoinError: the source window vanished or tmux refused the move.
        """
        log_activity("join.begin", {"window_id": window.window_id, "control": control_pane}, task_id=task.id)
        self.clear_foreground(control_pane)

        try:
            pane_ids = self.tmux.list_panes(window.window_id)
        except TmuxError as e:
            raise JoinError(f"window {window.window_id} is gone: {e.message}") from e
        if not pane_ids:
            raise JoinError(f"window {window.window_id} has no panes")

        agent, shell = identify_panes(task, pane_ids)
        try:
            self.tmux.join_pane(agent, control_pane, PaneDirection.Below, detached=True)
        except TmuxError as e:
            raise JoinError(f"could not join agent pane {agent}: {e.message}") from e
        log_activity("join.agent_joined", {"agent_pane": agent}, task_id=task.id)
        self._quietly("join.title_failed", self.tmux.set_pane_title, agent,
                      agent_title(self.agent_name(task), memory_mb))

        hidden = self.dims.shell_hidden()
        width = self.dims.default_width()
        retained = ""
        if hidden:
            retained = shell or task.shell_pane_id
            attached = None
            log_activity("join.shell_hidden", {"shell_pane": retained}, level="debug", task_id=task.id)
        else:
            attached = self.attach_shell(task, agent, shell, width)

        height = self.dims.default_height()
        self._quietly("join.resize_failed", self.tmux.resize_pane, control_pane, "height", height)
        self.decorate(control_pane)
        self._quietly("join.select_failed", self.tmux.select_pane, control_pane)

        binding = PaneBinding(control_pane, agent, attached)
        baseline = self.dims.measure(control_pane, agent, attached)
        applied = Dimensions(height=height, width=width if attached else 0)

        task.agent_pane_id = agent
        task.shell_pane_id = attached or retained or ""
        self.store.update_task_pane_ids(task.id, task.agent_pane_id, task.shell_pane_id)
        log_activity("join.done", {"agent_pane": agent, "shell_pane": attached, "baseline_height": baseline.height,
                                   "baseline_width": baseline.width}, task_id=task.id)
        return JoinResult(binding, window, hidden, retained, applied, baseline)

    def attach_shell(self, task: Task, agent_pane: str, shell_pane: str | None, width: int) -> str | None:
        """Join the existing shell beside the agent, or create a fresh one."""
        # A previously hidden shell lives in its own window, not the agent's
        if not shell_pane and task.shell_pane_id and self.tmux.pane_exists(task.shell_pane_id):
            shell_pane = task.shell_pane_id
        if shell_pane:
            try:
                self.tmux.join_pane(shell_pane, agent_pane, PaneDirection.Right, width, detached=True)
                self._quietly("join.title_failed", self.tmux.set_pane_title, shell_pane, SHELL_TITLE)
                return shell_pane
            except TmuxError as e:
                log_activity("join.shell_join_failed", {"shell_pane": shell_pane, "error": str(e)},
                             level="warn", task_id=task.id)
        return self.create_shell(task, agent_pane, width)

    def create_shell(self, task: Task, agent_pane: str, width: int) -> str | None:
        try:
            pane = self.tmux.split_pane(agent_pane, PaneDirection.Right, width, task_workdir(task), user_shell())
        except TmuxError as e:
            log_activity("join.shell_create_failed", {"error": str(e)}, level="error", task_id=task.id)
            return None
        self._quietly("join.title_failed", self.tmux.set_pane_title, pane, SHELL_TITLE)
        self._quietly("join.env_failed", self.tmux.send_keys, pane, shell_context(task, self.settings.session_id))
        self._quietly("join.env_failed", self.tmux.send_keys, pane, "clear")
        log_activity("join.shell_created", {"shell_pane": pane}, task_id=task.id)
        return pane

    def clear_foreground(self, control_pane: str) -> None:
        """Move any non-control pane out of the foreground window."""
        try:
            panes = self.tmux.list_panes(control_pane)
        except TmuxError as e:
            log_activity("join.list_foreground_failed", {"error": str(e)}, level="debug")
            return
        leftovers = [p for p in panes if p != control_pane]
        for pane in leftovers:
            self.relocate_leftover(pane)
        if leftovers:
            self._quietly("join.resize_failed", self.tmux.resize_pane, control_pane, "height", 100)

    def relocate_leftover(self, pane_id: str) -> None:
        try:
            dead = self.tmux.query_pane(pane_id, "pane_dead") == "1"
        except TmuxError:
            return  # already gone
        if dead:
            self._quietly("join.kill_failed", self.tmux.kill_pane, pane_id)
            log_activity("join.leftover_killed", {"pane": pane_id})
            return

        owner = self.store.find_task_by_pane(pane_id)
        if owner is not None:
            task, _role = owner
            window = self.park_pane(task, pane_id, window_name(task.id))
            if window is not None:
                self.locator.remember(task, window)
        else:
            self.park_orphan(pane_id)
        log_activity("join.leftover_relocated", {"pane": pane_id, "owner": owner[0].id if owner else None})

    # -- break ---------------------------------------------------------------

    def break_(
        self,
        task: Task,
        binding: PaneBinding,
        applied: Dimensions,
        baseline: Dimensions,
        shell_hidden: bool = False,
        save_height: bool = True,
        resize_control_pane: bool = True,
    ) -> BreakResult:
        """Send the joined panes back to the daemon session. Never raises on tmux errors."""
        log_activity("break.begin", {"agent_pane": binding.agent_pane_id, "shell_pane": binding.shell_pane_id,
                                     "save_height": save_height}, task_id=task.id)
        current = self.dims.measure(binding.control_pane_id, binding.agent_pane_id, binding.shell_pane_id)
        self.dims.persist(current, baseline, applied, save_height)

        self.undecorate()
        self._quietly("break.title_failed", self.tmux.set_pane_title, binding.control_pane_id, CONTROL_IDLE_TITLE)

        agent = binding.agent_pane_id
        shell = binding.shell_pane_id
        window = None
        if self.tmux.pane_exists(agent):
            window = self.park_pane(task, agent, window_name(task.id), resolve_first=True)
            if window is None:
                self.store.append_task_log(
                    task.id, LogKind.ERROR, f"Could not move agent pane {agent} out of the dashboard; left in place"
                )
        else:
            log_activity("break.agent_gone", {"agent_pane": agent}, level="warn", task_id=task.id)
            agent = ""

        if shell and not shell_hidden:
            if window is not None:
                try:
                    self.tmux.join_pane(shell, binding.agent_pane_id, PaneDirection.Right, detached=True)
                except TmuxError as e:
                    log_activity("break.shell_join_failed", {"shell_pane": shell, "error": str(e)},
                                 level="warn", task_id=task.id)
            elif not agent and self.tmux.pane_exists(shell):
                # Agent exited; the shell becomes the window's only pane
                window = self.park_pane(task, shell, window_name(task.id), resolve_first=True)

        if window is not None:
            self.locator.remember(task, window)

        persisted_shell = shell or (task.shell_pane_id if shell_hidden else "") or ""
        task.agent_pane_id = agent
        task.shell_pane_id = persisted_shell
        self.store.update_task_pane_ids(task.id, agent, persisted_shell)

        if resize_control_pane:
            self._quietly("break.resize_failed", self.tmux.resize_pane, binding.control_pane_id, "height", 100)
        log_activity("break.done", {"window_id": window.window_id if window else None}, task_id=task.id)
        return BreakResult(agent, persisted_shell, window)

    def park_pane(self, task: Task, pane_id: str, name: str, resolve_first: bool = False) -> WindowRef | None:
        """Move a pane into the daemon window called ``name``, creating it if needed.

        Falls back to detaching the pane into a brand-new daemon window. Returns
        None when both fail, in which case the pane was not touched.
        """
        target = self.locator.resolve(task) if resolve_first else self.locator.find_by_name(task, name)
        if target is not None:
            try:
                self.tmux.join_pane(pane_id, target.window_id, PaneDirection.Left, detached=True)
                log_activity("break.pane_parked", {"pane": pane_id, "window_id": target.window_id}, task_id=task.id)
                return target
            except TmuxError as e:
                log_activity("break.park_join_failed", {"pane": pane_id, "error": str(e)},
                             level="warn", task_id=task.id)
        return self.detach_pane(task, pane_id, name)

    def detach_pane(self, task: Task, pane_id: str, name: str) -> WindowRef | None:
        """Break a pane out into a new daemon window called ``name``."""
        try:
            session = self.starter.ensure_daemon_session()
            window_id = self.tmux.break_pane(pane_id, session, name)
        except (TmuxError, StartError) as e:
            log_activity("break.park_failed", {"pane": pane_id, "error": str(e)}, level="error", task_id=task.id)
            return None
        log_activity("break.pane_detached", {"pane": pane_id, "window_id": window_id}, task_id=task.id)
        return WindowRef(session, window_id)

    def park_orphan(self, pane_id: str) -> WindowRef | None:
        try:
            session = self.starter.ensure_daemon_session()
            window_id = self.tmux.break_pane(pane_id, session, f"orphan-{pane_id.lstrip('%')}")
        except (TmuxError, StartError) as e:
            log_activity("join.orphan_park_failed", {"pane": pane_id, "error": str(e)}, level="warn")
            return None
        return WindowRef(session, window_id)

    # -- session chrome ------------------------------------------------------

    def decorate(self, control_pane: str) -> None:
        """Apply joined-state styling and key bindings to the foreground session."""
        self.apply_style(JOINED_STYLE)
        self.install_bindings(control_pane)

    def undecorate(self) -> None:
        self.uninstall_bindings()
        self.apply_style(DETACHED_STYLE)

    def _guarded(self, action: str, key: str) -> list[str]:
        """``if-shell`` wrapper so a root binding only acts in the foreground session."""
        condition = f"#{{==:#{{session_name}},{self.settings.ui_session}}}"
        return ["if-shell", "-F", condition, action, f"send-keys {key}"]

    def install_bindings(self, control_pane: str) -> None:
        for key, action in PANE_CYCLE_BINDINGS.items():
            self._quietly("bind.failed", self.tmux.bind_key, "root", key, *self._guarded(action, key))
        for key, jump in TASK_JUMP_BINDINGS.items():
            action = f"select-pane -t {control_pane} ; send-keys -t {control_pane} {jump}"
            self._quietly("bind.failed", self.tmux.bind_key, "root", key, *self._guarded(action, key))

    def uninstall_bindings(self) -> None:
        for key in [*PANE_CYCLE_BINDINGS, *TASK_JUMP_BINDINGS]:
            self._quietly("unbind.failed", self.tmux.unbind_key, "root", key)

    def apply_style(self, style: dict[str, str]) -> None:
        for option, value in style.items():
            self._quietly("style.failed", self.tmux.set_option, self.settings.ui_session, option, value)

    def set_agent_title(self, task: Task, agent_pane: str, memory_mb: int) -> None:
        self._quietly("title.failed", self.tmux.set_pane_title, agent_pane,
                      agent_title(self.agent_name(task), memory_mb))

    def focus_agent(self, binding: PaneBinding) -> None:
        self._quietly("focus.failed", self.tmux.select_pane, binding.agent_pane_id)
