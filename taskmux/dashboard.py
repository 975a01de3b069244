"""Task detail dashboard.

Runs in the foreground session's control pane. The header shows the task,
a spinner while its agent starts, an error badge when something failed and
the joined pane ids; it dims while another pane holds focus.

Keys:
    q      Close the view (panes go back to the daemon session) and quit
    s      Hide/show the companion shell pane
    r      Refresh: reload the task and retry attaching
    [ / ]  Previous/next task, focusing its agent pane
"""

from __future__ import annotations

import asyncio
import os
import sys
import termios
import tty

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from taskmux.activity import log_activity
from taskmux.config import Settings
from taskmux.controller import DetailController
from taskmux.events import EventLoop
from taskmux.messages import KeyPressed, Message
from taskmux.models import Task, ViewInstance
from taskmux.reconciler import JUMP_NEXT_KEY, JUMP_PREV_KEY
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxManager

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

STATUS_STYLES = {
    "backlog": "dim",
    "queued": "cyan",
    "processing": "green",
    "blocked": "yellow",
    "done": "blue",
    "archived": "dim",
}

console = Console()


def build_header(view: ViewInstance | None, shell_busy: bool = False) -> Panel:
    """Render the detail header for the current view."""
    if view is None:
        return Panel(Text("No task open", style="dim"), title="[bold blue]TASKMUX[/bold blue]", border_style="blue")

    task = view.task
    text = Text()
    text.append(f"#{task.id} ", style="bold cyan")
    text.append(f"{task.title}  ", style="bold")
    text.append(task.status.value, style=STATUS_STYLES.get(task.status.value, ""))
    pos, total = view.position
    if pos:
        text.append(f"  ({pos}/{total})", style="dim")

    text.append("\n")
    if view.loading:
        frame = SPINNER_FRAMES[view.spinner_frame % len(SPINNER_FRAMES)]
        text.append(f"{frame} Starting agent...", style="yellow")
    elif view.binding is not None:
        binding = view.binding
        text.append(f"agent {binding.agent_pane_id}", style="green")
        if view.memory_mb:
            text.append(f" ({view.memory_mb} MB)", style="dim")
        if binding.shell_pane_id:
            text.append(f"  shell {binding.shell_pane_id}", style="green")
            if shell_busy:
                text.append(" (running)", style="yellow")
        elif view.shell_hidden:
            text.append("  shell hidden", style="dim")
    elif view.failed:
        text.append("detached (failed, press r to reopen)", style="red")
    else:
        text.append("detached", style="dim")

    if view.error:
        text.append("\n")
        text.append(" ERROR ", style="bold white on red")
        text.append(f" {view.error}", style="red")

    text.append("\n[q] Quit  [s] Shell  [r] Refresh  [ and ] Prev/Next task", style="dim italic")
    border = "blue" if view.focused else "grey37"
    panel = Panel(text, title="[bold blue]TASKMUX[/bold blue]", border_style=border)
    if not view.focused:
        panel.style = "dim"
    return panel


class Dashboard:
    """Wires keyboard input and controller messages to a rich Live display."""

    def __init__(self, controller: DetailController, store: TaskStore, events: EventLoop):
        self.controller = controller
        self.store = store
        self.events = events
        self.live: Live | None = None

    def render(self) -> Panel:
        return build_header(self.controller.view, self.controller.shell_busy)

    def handle(self, message: Message) -> None:
        if isinstance(message, KeyPressed):
            self.on_key(message.key)
        else:
            self.controller.handle(message)
        if self.live is not None:
            self.live.update(self.render())

    def on_key(self, key: str) -> None:
        if key == "q":
            self.controller.close(save_height=True, resize_control_pane=True)
            self.events.stop()
        elif key == "s":
            self.controller.toggle_shell_visibility()
        elif key == "r":
            self.retry()
        elif key == JUMP_PREV_KEY:
            self.jump(-1)
        elif key == JUMP_NEXT_KEY:
            self.jump(1)

    def retry(self) -> None:
        view = self.controller.view
        if view is not None and view.failed:
            # A failed view stays failed; attach again through a fresh one
            task = self.store.get_task(view.task.id) or view.task
            self.controller.open(task, focus_agent_on_join=view.focus_agent_on_join)
        else:
            self.controller.refresh()

    def jump(self, step: int) -> None:
        view = self.controller.view
        if view is None:
            return
        task_id = self.store.adjacent_task_id(view.task.id, step)
        if task_id is None:
            return
        task = self.store.get_task(task_id)
        if task is not None:
            self.controller.open(task, focus_agent_on_join=True)

    def _on_stdin(self, fd: int) -> None:
        try:
            data = os.read(fd, 32)
        except OSError:
            return
        # Escape sequences (arrows etc.) are not used here
        if data.startswith(b"\x1b"):
            return
        for ch in data.decode(errors="ignore"):
            self.events.post(KeyPressed(ch))

    async def run(self, task: Task, focus_agent: bool = False) -> None:
        loop = asyncio.get_running_loop()
        fd = sys.stdin.fileno()
        old_settings = None
        try:
            old_settings = termios.tcgetattr(fd)
        except termios.error:
            pass  # Not a TTY, skip keyboard input

        try:
            if old_settings:
                tty.setcbreak(fd)
                loop.add_reader(fd, self._on_stdin, fd)
            with Live(self.render(), console=console, refresh_per_second=10, screen=True, transient=False) as live:
                self.live = live
                self.controller.open(task, focus_agent_on_join=focus_agent)
                live.update(self.render())
                await self.events.run(self.handle)
        finally:
            self.live = None
            if old_settings:
                loop.remove_reader(fd)
                try:
                    termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
                except termios.error:
                    pass
            # Never leave the task's panes stranded in the foreground
            self.controller.close()


def run_dashboard(task: Task, store: TaskStore, settings: Settings, focus_agent: bool = False) -> None:
    """Open the detail view for ``task`` and block until the user quits."""
    tmux = TmuxManager(socket_name=settings.socket_name, timeouts=settings.timeouts)

    async def main() -> None:
        events = EventLoop()
        controller = DetailController(tmux, store, settings, events)
        await Dashboard(controller, store, events).run(task, focus_agent)

    log_activity("dashboard.start", {"ui_session": settings.ui_session}, task_id=task.id)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    finally:
        console.print("\n[dim]Dashboard stopped[/dim]")
