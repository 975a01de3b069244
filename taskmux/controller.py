"""Detail view controller.

Owns the one open :class:`ViewInstance` and drives it through
Detached -> Joining -> Joined (or Failed). All state changes happen in
:meth:`DetailController.handle` or in the user-triggered entry points
(``open``, ``refresh``, ``close``, ``toggle_shell_visibility``), which run on
the event loop thread. Periodic checks and agent start-up run as background
units that report back with a single message.
"""

from __future__ import annotations

from typing import Callable, Protocol

from taskmux.activity import log_activity
from taskmux.config import Settings
from taskmux.layout import Dimensions, DimensionTracker, FocusTracker
from taskmux.locator import WindowLocator
from taskmux.messages import (
    DriftChecked,
    FocusChanged,
    FocusTick,
    JoinCompleted,
    LoadingStarted,
    Message,
    ReconcileTick,
    SpinnerTick,
    UnitFailed,
)
from taskmux.models import JoinState, LogKind, Task, TaskStatus, ViewInstance, WindowRef
from taskmux.reconciler import CONTROL_IDLE_TITLE, JoinError, JoinResult, PaneReconciler
from taskmux.requests import CancellableRequest, Ticket
from taskmux.shell import ShellToggle, has_running_shell_process
from taskmux.starter import SessionStarter, StartError
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxError, TmuxManager


class Scheduler(Protocol):
    def post(self, message: Message) -> None: ...

    def spawn(self, name: str, fn: Callable[..., Message], *args): ...

    def after(self, delay: float, message: Message) -> None: ...


class DetailController:
    """Opens, reconciles and closes the detail view of one task at a time."""

    def __init__(
        self,
        tmux: TmuxManager,
        store: TaskStore,
        settings: Settings,
        events: Scheduler,
        control_pane: str | None = None,
    ):
        self.tmux = tmux
        self.store = store
        self.settings = settings
        self.events = events
        self.control_pane = control_pane or tmux.current_pane_id() or ""

        self.locator = WindowLocator(tmux, store, settings)
        self.starter = SessionStarter(tmux, store, settings, self.locator)
        self.dims = DimensionTracker(tmux, store, settings)
        self.focus = FocusTracker(tmux, settings)
        self.reconciler = PaneReconciler(tmux, store, settings, self.locator, self.starter, self.dims)
        self.shell = ShellToggle(tmux, store, settings, self.reconciler, self.dims)

        self.starts = CancellableRequest()
        self.view: ViewInstance | None = None
        self.shell_busy = False
        self._drift_pending = False
        self._focus_pending = False

    # -- exposed operations --------------------------------------------------

    def open(self, task: Task, focus_agent_on_join: bool = False) -> ViewInstance:
        """Show ``task``: join its live window, or start it in the background."""
        if self.view is not None:
            # Switching tasks: skip the full-height flicker between views
            self.close(save_height=False, resize_control_pane=False)

        view = ViewInstance(task=task, focus_agent_on_join=focus_agent_on_join)
        view.shell_hidden = self.dims.shell_hidden()
        view.position = self._position(task)
        self.view = view
        self._drift_pending = False
        self._focus_pending = False
        log_activity("view.open", {"view_id": view.view_id, "focus_agent": focus_agent_on_join}, task_id=task.id)
        self._set_control_title(view)

        window = self.locator.resolve(task)
        if window is not None:
            self._join_now(view, window)
        elif task.can_auto_start:
            self._start_loading(view)
        else:
            log_activity("view.no_auto_start", {"status": task.status.value}, task_id=task.id)

        self.events.after(self.settings.intervals.reconcile, ReconcileTick(view.view_id))
        self.events.after(self.settings.intervals.focus, FocusTick(view.view_id))
        return view

    def refresh(self) -> None:
        """Reload the task and retry attaching.

        A Failed view only reloads its task; it takes a new :meth:`open` to
        attach again.
        """
        view = self.view
        if view is None:
            return
        task = self.store.get_task(view.task.id)
        if task is not None:
            view.task = task
        view.position = self._position(view.task)
        self._set_control_title(view)

        if view.binding is not None:
            view.memory_mb = self.tmux.pane_memory_mb(view.binding.agent_pane_id)
            self.reconciler.set_agent_title(view.task, view.binding.agent_pane_id, view.memory_mb)
            return
        if view.loading or view.failed:
            return

        view.error = None
        window = self.locator.resolve(view.task)
        if window is not None:
            self._join_now(view, window)
        elif view.task.can_auto_start:
            self._start_loading(view)

    def close(self, save_height: bool = True, resize_control_pane: bool = True) -> None:
        """Break the current view's panes back to the daemon session."""
        view = self.view
        if view is None:
            return
        self.starts.cancel()
        self.view = None
        log_activity("view.close", {"view_id": view.view_id, "save_height": save_height}, task_id=view.task.id)
        if view.binding is None:
            self._reset_control_title()
            return
        self.reconciler.break_(
            view.task,
            view.binding,
            _applied(view),
            _baseline(view),
            shell_hidden=view.shell_hidden,
            save_height=save_height,
            resize_control_pane=resize_control_pane,
        )
        view.binding = None
        view.state = JoinState.DETACHED

    def toggle_shell_visibility(self) -> None:
        view = self.view
        if view is None or view.binding is None:
            self.dims.set_shell_hidden(not self.dims.shell_hidden())
            if view is not None:
                view.shell_hidden = self.dims.shell_hidden()
            return

        if view.shell_hidden:
            outcome = self.shell.show(view.task, view.binding)
        else:
            outcome = self.shell.hide(view.task, view.binding, view.applied_width, view.baseline_width)
        view.binding = outcome.binding
        view.shell_hidden = outcome.hidden
        view.applied_width = outcome.applied_width
        view.baseline_width = outcome.baseline_width

    # -- message handling ----------------------------------------------------

    def handle(self, message: Message) -> None:
        if isinstance(message, JoinCompleted):
            self._on_join_completed(message)
        elif isinstance(message, SpinnerTick):
            self._on_spinner(message)
        elif isinstance(message, ReconcileTick):
            self._on_reconcile_tick(message)
        elif isinstance(message, DriftChecked):
            self._on_drift_checked(message)
        elif isinstance(message, FocusTick):
            self._on_focus_tick(message)
        elif isinstance(message, FocusChanged):
            self._on_focus_changed(message)
        elif isinstance(message, LoadingStarted):
            log_activity("view.loading", {"request_id": message.request_id}, level="debug", task_id=message.task_id)
        elif isinstance(message, UnitFailed):
            self._on_unit_failed(message)

    def _current(self, view_id: int) -> ViewInstance | None:
        view = self.view
        if view is None or view.view_id != view_id:
            return None
        return view

    def _on_join_completed(self, msg: JoinCompleted) -> None:
        view = self._current(msg.view_id)
        if view is None or not self.starts.complete(msg.request_id):
            log_activity("view.stale_completion", {"request_id": msg.request_id}, task_id=msg.task_id)
            if msg.result is not None and msg.task is not None:
                self._undo_stale_join(msg.task, msg.result)
            return

        view.loading = False
        if msg.task is not None:
            view.task = msg.task
        if msg.error:
            self.store.append_task_log(view.task.id, LogKind.ERROR, msg.error)
            if msg.stage == "join":
                view.mark_failed(msg.error)
            else:
                view.state = JoinState.DETACHED
                view.error = msg.error
            return
        if msg.result is not None:
            self._apply_join(view, msg.result)

    def _on_spinner(self, msg: SpinnerTick) -> None:
        view = self._current(msg.view_id)
        if view is None or not view.loading:
            return
        view.spinner_frame += 1
        self.events.after(self.settings.intervals.spinner, SpinnerTick(view.view_id))

    def _on_reconcile_tick(self, msg: ReconcileTick) -> None:
        view = self._current(msg.view_id)
        if view is None:
            return
        idle = view.failed and view.binding is None
        if not self._drift_pending and not view.loading and not idle:
            self._drift_pending = True
            agent = view.binding.agent_pane_id if view.binding else ""
            shell = view.binding.shell_pane_id if view.binding else None
            self.events.spawn("drift", self._drift_unit, view.view_id, view.task.model_copy(), agent, shell)
        self.events.after(self.settings.intervals.reconcile, ReconcileTick(view.view_id))

    def _on_drift_checked(self, msg: DriftChecked) -> None:
        self._drift_pending = False
        view = self._current(msg.view_id)
        if view is None:
            return

        if view.binding is not None:
            if msg.agent_pane_id != view.binding.agent_pane_id:
                return
            if not msg.agent_present:
                log_activity("drift.agent_lost", {"agent_pane": msg.agent_pane_id}, level="warn", task_id=view.task.id)
                self.reconciler.undecorate()
                view.binding = None
                view.state = JoinState.DETACHED
                return
            self.shell_busy = msg.shell_busy
            if msg.memory_mb != view.memory_mb:
                view.memory_mb = msg.memory_mb
                self.reconciler.set_agent_title(view.task, view.binding.agent_pane_id, view.memory_mb)
            return

        # Nothing joined: self-heal unless this view already gave up
        if view.failed or view.loading or msg.window is None:
            return
        log_activity("drift.rejoin", {"window_id": msg.window.window_id}, task_id=view.task.id)
        self.locator.remember(view.task, msg.window)
        self._join_now(view, msg.window)

    def _on_focus_tick(self, msg: FocusTick) -> None:
        view = self._current(msg.view_id)
        if view is None:
            return
        if not self._focus_pending:
            self._focus_pending = True
            self.events.spawn("focus", self._focus_unit, view.view_id, self.control_pane)
        self.events.after(self.settings.intervals.focus, FocusTick(view.view_id))

    def _on_focus_changed(self, msg: FocusChanged) -> None:
        self._focus_pending = False
        view = self._current(msg.view_id)
        if view is not None:
            view.focused = msg.focused

    def _on_unit_failed(self, msg: UnitFailed) -> None:
        if msg.unit == "drift":
            self._drift_pending = False
        elif msg.unit == "focus":
            self._focus_pending = False
        else:
            # Start units report their own errors with a request id; this one can't be attributed
            log_activity("view.unit_failed", {"unit": msg.unit, "error": msg.error}, level="error")

    # -- background units (worker threads; must not touch self.view) --------

    def _start_unit(self, view_id: int, task: Task, ticket: Ticket, control_pane: str) -> JoinCompleted:
        def done(**kwargs) -> JoinCompleted:
            return JoinCompleted(view_id, task.id, ticket.id, task=task, **kwargs)

        try:
            window = self.starter.start(task)
        except StartError as e:
            return done(error=str(e), stage="start")
        except Exception as e:
            log_activity("start.crashed", {"request_id": ticket.id, "error": str(e)}, level="error", task_id=task.id)
            return done(error=str(e), stage="start")
        if ticket.is_cancelled():
            return done()
        try:
            result = self.reconciler.join(task, window, control_pane)
        except JoinError as e:
            return done(error=str(e), stage="join")
        except Exception as e:
            log_activity("join.crashed", {"request_id": ticket.id, "error": str(e)}, level="error", task_id=task.id)
            return done(error=str(e), stage="join")
        return done(result=result)

    def _drift_unit(self, view_id: int, task: Task, agent_pane: str, shell_pane: str | None) -> DriftChecked:
        if agent_pane:
            # Gone, or moved out of the foreground by hand, both count as lost
            try:
                present = self.tmux.query_pane(agent_pane, "session_name") == self.settings.ui_session
            except TmuxError:
                present = False
            memory = self.tmux.pane_memory_mb(agent_pane) if present else 0
            busy = has_running_shell_process(self.tmux, shell_pane or "")
            return DriftChecked(view_id, agent_pane, present, memory_mb=memory, shell_busy=busy)
        return DriftChecked(view_id, "", False, window=self.locator.resolve(task))

    def _focus_unit(self, view_id: int, control_pane: str) -> FocusChanged:
        return FocusChanged(view_id, self.focus.is_focused(control_pane))

    # -- helpers -------------------------------------------------------------

    def _join_now(self, view: ViewInstance, window: WindowRef) -> None:
        view.state = JoinState.JOINING
        try:
            result = self.reconciler.join(view.task, window, self.control_pane, view.memory_mb)
        except JoinError as e:
            log_activity("view.join_failed", {"error": str(e)}, level="error", task_id=view.task.id)
            self.store.append_task_log(view.task.id, LogKind.ERROR, str(e))
            view.mark_failed(str(e))
            return
        self._apply_join(view, result)

    def _apply_join(self, view: ViewInstance, result: JoinResult) -> None:
        view.binding = result.binding
        view.window = result.window
        view.shell_hidden = result.shell_hidden
        view.applied_height = result.applied.height
        view.applied_width = result.applied.width
        view.baseline_height = result.baseline.height
        view.baseline_width = result.baseline.width
        view.state = JoinState.JOINED
        view.loading = False
        view.error = None
        self._set_control_title(view)
        if view.focus_agent_on_join:
            view.focus_agent_on_join = False
            self.reconciler.focus_agent(result.binding)

    def _start_loading(self, view: ViewInstance) -> None:
        ticket = self.starts.issue()
        view.loading = True
        view.state = JoinState.JOINING
        view.spinner_frame = 0
        self.events.post(LoadingStarted(view.view_id, view.task.id, ticket.id))
        self.events.spawn("start", self._start_unit, view.view_id, view.task.model_copy(), ticket, self.control_pane)
        self.events.after(self.settings.intervals.spinner, SpinnerTick(view.view_id))

    def _undo_stale_join(self, task: Task, result: JoinResult) -> None:
        """A superseded start still joined its panes; send them back untouched."""
        try:
            foreground = set(self.tmux.list_panes(self.control_pane))
        except TmuxError:
            foreground = set()
        if result.binding.agent_pane_id not in foreground:
            return
        current = self.view
        keep_layout = current is not None and current.binding is not None
        self.reconciler.break_(
            task,
            result.binding,
            result.applied,
            result.baseline,
            shell_hidden=result.shell_hidden,
            save_height=False,
            resize_control_pane=not keep_layout,
        )
        if keep_layout:
            self.reconciler.decorate(self.control_pane)
            self._set_control_title(current)

    def _position(self, task: Task) -> tuple[int, int]:
        ids = [t.id for t in self.store.list_tasks() if t.status != TaskStatus.ARCHIVED]
        if task.id not in ids:
            return 0, len(ids)
        return ids.index(task.id) + 1, len(ids)

    def _set_control_title(self, view: ViewInstance) -> None:
        if not self.control_pane:
            return
        pos, total = view.position
        title = f"Task {view.task.id} ({pos}/{total})" if pos else f"Task {view.task.id}"
        try:
            self.tmux.set_pane_title(self.control_pane, title)
        except TmuxError as e:
            log_activity("view.title_failed", {"error": str(e)}, level="debug", task_id=view.task.id)

    def _reset_control_title(self) -> None:
        if not self.control_pane:
            return
        try:
            self.tmux.set_pane_title(self.control_pane, CONTROL_IDLE_TITLE)
        except TmuxError as e:
            log_activity("view.title_failed", {"error": str(e)}, level="debug")


def _applied(view: ViewInstance) -> Dimensions:
    return Dimensions(height=view.applied_height, width=view.applied_width)


def _baseline(view: ViewInstance) -> Dimensions:
    return Dimensions(height=view.baseline_height, width=view.baseline_width)
