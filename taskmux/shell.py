"""Shell Pane Visibility Toggle.

A hidden shell is parked in its own daemon window (``task-<id>-shell``) so
whatever it is running keeps running. Showing it again rejoins that pane,
or creates a fresh shell if the parked one is gone.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from taskmux.activity import log_activity
from taskmux.config import Settings
from taskmux.layout import Dimensions, DimensionTracker
from taskmux.models import LogKind, PaneBinding, Task, hidden_shell_window_name
from taskmux.reconciler import PaneReconciler
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxError, TmuxManager

SHELL_COMMANDS = frozenset({"sh", "bash", "zsh", "fish", "dash", "ksh", "tcsh", "nu"})


def has_running_shell_process(tmux: TmuxManager, pane_id: str) -> bool:
    """True when the shell pane's foreground process is something other than the shell."""
    if not pane_id:
        return False
    try:
        command = tmux.query_pane(pane_id, "pane_current_command")
    except TmuxError:
        return False
    if not command:
        return False
    login_shell = os.path.basename(os.environ.get("SHELL", ""))
    return command not in SHELL_COMMANDS and command != login_shell


@dataclass
class ShellToggleResult:
    binding: PaneBinding
    hidden: bool
    # Width percentage applied when the shell was (re)attached, else 0
    applied_width: int = 0
    baseline_width: int = 0


class ShellToggle:
    def __init__(
        self,
        tmux: TmuxManager,
        store: TaskStore,
        settings: Settings,
        reconciler: PaneReconciler | None = None,
        dims: DimensionTracker | None = None,
    ):
        self.tmux = tmux
        self.store = store
        self.settings = settings
        self.reconciler = reconciler or PaneReconciler(tmux, store, settings)
        self.dims = dims or self.reconciler.dims

    def hide(self, task: Task, binding: PaneBinding, applied_width: int, baseline_width: int) -> ShellToggleResult:
        """Persist the current width, then move the shell into its hidden window."""
        current = self.dims.shell_width_percent(binding.agent_pane_id, binding.shell_pane_id)
        self.dims.persist(Dimensions(width=current), Dimensions(width=baseline_width),
                          Dimensions(width=applied_width), save=True)
        self.dims.set_shell_hidden(True)

        shell = binding.shell_pane_id
        if not shell:
            return ShellToggleResult(binding, hidden=True)

        window = self.reconciler.detach_pane(task, shell, hidden_shell_window_name(task.id))
        if window is None:
            self.store.append_task_log(task.id, LogKind.ERROR, f"Could not hide shell pane {shell}")
            return ShellToggleResult(binding, hidden=False, applied_width=applied_width,
                                     baseline_width=baseline_width)

        log_activity("shell.hidden", {"shell_pane": shell, "window_id": window.window_id,
                                      "busy": has_running_shell_process(self.tmux, shell)}, task_id=task.id)
        task.shell_pane_id = shell
        self.store.update_task_pane_ids(task.id, binding.agent_pane_id, shell)
        return ShellToggleResult(PaneBinding(binding.control_pane_id, binding.agent_pane_id, None), hidden=True)

    def show(self, task: Task, binding: PaneBinding) -> ShellToggleResult:
        """Rejoin the hidden shell beside the agent, or create a fresh one."""
        self.dims.set_shell_hidden(False)
        width = self.dims.default_width()
        shell = self.reconciler.attach_shell(task, binding.agent_pane_id, None, width)
        if shell is None:
            return ShellToggleResult(binding, hidden=False)

        task.shell_pane_id = shell
        self.store.update_task_pane_ids(task.id, binding.agent_pane_id, shell)
        log_activity("shell.shown", {"shell_pane": shell}, task_id=task.id)
        baseline = self.dims.shell_width_percent(binding.agent_pane_id, shell)
        return ShellToggleResult(
            PaneBinding(binding.control_pane_id, binding.agent_pane_id, shell),
            hidden=False,
            applied_width=width,
            baseline_width=baseline,
        )
