"""CLI interface for taskmux.

``taskmux open`` is the main entry point: it shows a task's agent and shell
panes under a small dashboard inside the ``task-ui`` tmux session. The other
commands manage tasks and help debug pane placement.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import sys
import time

import click
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from taskmux import __version__
from taskmux.activity import LEVELS, clear_activity_log, read_activity_log
from taskmux.config import Settings, ensure_home, get_settings
from taskmux.executors import DEFAULT_EXECUTOR, EXECUTORS
from taskmux.layout import DimensionTracker
from taskmux.locator import WindowLocator
from taskmux.models import LogKind, TaskStatus
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxManager, check_tmux_available

console = Console()

STATUS_CHOICES = [s.value for s in TaskStatus]
KIND_STYLES = {LogKind.SYSTEM: "cyan", LogKind.ERROR: "red", LogKind.OUTPUT: "white"}


def open_store(settings: Settings) -> TaskStore:
    ensure_home(settings)
    return TaskStore(settings.db_path)


def make_tmux(settings: Settings) -> TmuxManager:
    return TmuxManager(socket_name=settings.socket_name, timeouts=settings.timeouts)


def reexec_in_tmux(settings: Settings, argv: list[str]) -> None:
    """Replace this process with ``tmux new-session -A`` running ``argv``."""
    command = ["tmux"]
    if settings.socket_name:
        command += ["-L", settings.socket_name]
    command += ["new-session", "-A", "-s", settings.ui_session, shlex.join(argv)]
    os.execvp("tmux", command)


@click.group()
@click.version_option(version=__version__)
def main():
    """taskmux - watch and drive coding agents running in tmux.

    Each task's agent runs in a background tmux window; `taskmux open`
    brings it (plus a companion shell) into view.
    """
    pass


@main.command(name="open")
@click.argument("task_id", type=int)
@click.option("--focus-agent", "-a", is_flag=True, help="Move focus to the agent pane once joined")
def open_task(task_id: int, focus_agent: bool):
    """Open the detail view for TASK_ID."""
    settings = get_settings()
    if not check_tmux_available():
        console.print("[red]Error:[/red] tmux not found")
        sys.exit(1)

    store = open_store(settings)
    task = store.get_task(task_id)
    if task is None:
        console.print(f"[red]Error:[/red] No task {task_id}")
        sys.exit(1)

    tmux = make_tmux(settings)
    if not tmux.is_inside_tmux():
        argv = [sys.argv[0], "open", str(task_id)] + (["--focus-agent"] if focus_agent else [])
        store.close()
        reexec_in_tmux(settings, argv)
        return

    pane = tmux.current_pane_id()
    info = tmux.pane_info(pane) if pane else None
    if info is not None and info.session_name != settings.ui_session:
        console.print(f"[yellow]![/yellow] Not in the {settings.ui_session} session; "
                      "pane shortcuts will not be active")

    from taskmux.dashboard import run_dashboard

    try:
        run_dashboard(task, store, settings, focus_agent=focus_agent)
    finally:
        store.close()


@main.command()
@click.argument("title")
@click.option("--body", "-b", default="", help="Task description")
@click.option("--status", "-s", type=click.Choice(STATUS_CHOICES), default=TaskStatus.BACKLOG.value,
              help="Initial status")
@click.option("--agent", type=click.Choice(sorted(EXECUTORS)), default=DEFAULT_EXECUTOR, help="Agent to run")
@click.option("--workspace", "-w", type=click.Path(file_okay=False), default=None,
              help="Working directory (default: current directory)")
@click.option("--token", default="", help="Continuation token to resume an earlier agent session")
@click.option("--dangerous", is_flag=True, help="Skip the agent's permission prompts")
def add(title: str, body: str, status: str, agent: str, workspace: str | None, token: str, dangerous: bool):
    """Create a task."""
    store = open_store(get_settings())
    try:
        task = store.add_task(
            title,
            body=body,
            status=TaskStatus(status),
            agent_kind=agent,
            workspace_path=os.path.abspath(workspace or os.getcwd()),
            continuation_token=token,
            dangerous_mode=dangerous,
        )
    finally:
        store.close()
    console.print(f"[green]✓[/green] Created task {task.id}: {task.title}")


@main.command(name="list")
@click.option("--status", "-s", type=click.Choice(STATUS_CHOICES), default=None, help="Only this status")
def list_tasks(status: str | None):
    """List tasks."""
    store = open_store(get_settings())
    try:
        tasks = store.list_tasks(TaskStatus(status) if status else None)
    finally:
        store.close()

    if not tasks:
        console.print("[dim]No tasks[/dim]")
        return

    table = Table(title="Tasks")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Agent")
    table.add_column("Window", style="dim")
    for task in tasks:
        status_str = task.status.value
        if task.status in (TaskStatus.PROCESSING, TaskStatus.QUEUED):
            status_str = f"[green]{status_str}[/green]"
        elif task.status == TaskStatus.BLOCKED:
            status_str = f"[yellow]{status_str}[/yellow]"
        elif task.status in (TaskStatus.DONE, TaskStatus.ARCHIVED):
            status_str = f"[dim]{status_str}[/dim]"
        table.add_row(str(task.id), task.title, status_str, task.agent_kind, task.canonical_window_id or "-")
    console.print(table)


@main.command()
@click.argument("task_id", type=int)
@click.argument("status", type=click.Choice(STATUS_CHOICES))
def move(task_id: int, status: str):
    """Set TASK_ID's status."""
    store = open_store(get_settings())
    try:
        if store.get_task(task_id) is None:
            console.print(f"[red]Error:[/red] No task {task_id}")
            sys.exit(1)
        store.update_task_status(task_id, TaskStatus(status))
    finally:
        store.close()
    console.print(f"[green]✓[/green] Task {task_id} is now {status}")


@main.command()
@click.argument("task_id", type=int)
def panes(task_id: int):
    """Show where TASK_ID's window and panes live."""
    settings = get_settings()
    store = open_store(settings)
    try:
        task = store.get_task(task_id)
        if task is None:
            console.print(f"[red]Error:[/red] No task {task_id}")
            sys.exit(1)
        tmux = make_tmux(settings)
        window = WindowLocator(tmux, store, settings).resolve(task)
        dims = DimensionTracker(tmux, store, settings)

        table = Table(title=f"Task {task.id}: {task.title}", show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Window", f"{window.window_id} in {window.session_name}" if window else "[dim]none[/dim]")
        for label, pane_id in (("Agent pane", task.agent_pane_id), ("Shell pane", task.shell_pane_id)):
            info = tmux.pane_info(pane_id) if pane_id else None
            if info is None:
                table.add_row(label, f"{pane_id or '-'} [dim](not running)[/dim]")
            else:
                table.add_row(label, f"{pane_id} in {info.session_name} ({info.current_command or '?'})")
        table.add_row("Default height", f"{dims.default_height()}%")
        table.add_row("Default shell width", f"{dims.default_width()}%")
        table.add_row("Shell hidden", "yes" if dims.shell_hidden() else "no")
    finally:
        store.close()
    console.print(table)


@main.command()
@click.argument("task_id", type=int)
@click.option("--lines", "-n", default=30, help="Number of entries to show")
def history(task_id: int, lines: int):
    """Show TASK_ID's audit log."""
    store = open_store(get_settings())
    try:
        entries = store.get_task_logs(task_id, limit=lines)
    finally:
        store.close()
    if not entries:
        console.print("[dim]No log entries[/dim]")
        return
    for entry in entries:
        ts = time.strftime("%H:%M:%S", time.localtime(entry.created_at))
        style = KIND_STYLES.get(entry.kind, "white")
        console.print(f"[dim]{ts}[/dim] [{style}]{entry.kind.value:<6}[/] {entry.text}", highlight=False)


@main.command()
@click.option("--task", "-t", "task_id", type=int, default=None, help="Only events for this task")
@click.option("--lines", "-n", default=50, help="Number of entries to show")
@click.option("--level", "-l", type=click.Choice(LEVELS), default="info", help="Minimum level")
@click.option("--clear", "clear_log", is_flag=True, help="Delete the activity log")
def logs(task_id: int | None, lines: int, level: str, clear_log: bool):
    """Show the pane reconciliation activity log."""
    if clear_log:
        if Confirm.ask("Delete the activity log?"):
            clear_activity_log()
            console.print("[green]✓[/green] Activity log cleared")
        return

    entries = read_activity_log(max_entries=lines, task_id=task_id, min_level=level)
    if not entries:
        console.print("[dim]No activity[/dim]")
        return

    table = Table(box=None)
    table.add_column("Time", style="dim")
    table.add_column("Level")
    table.add_column("Task", justify="right")
    table.add_column("Event", style="cyan")
    table.add_column("Details")
    level_styles = {"debug": "dim", "info": "", "warn": "yellow", "error": "red"}
    skip = {"timestamp", "time_str", "level", "event", "task_id"}
    for entry in entries:
        lvl = entry.get("level", "info")
        details = "  ".join(f"{k}={v}" for k, v in entry.items() if k not in skip)
        table.add_row(
            entry.get("time_str", ""),
            f"[{level_styles.get(lvl) or 'white'}]{lvl}[/]",
            str(entry["task_id"]) if entry.get("task_id") is not None else "",
            entry.get("event", ""),
            details,
        )
    console.print(table)


@main.command()
def doctor():
    """Check prerequisites and configuration."""
    settings = get_settings()
    console.print("[bold]taskmux Health Check[/bold]\n")

    all_ok = True

    console.print("[cyan]System Requirements:[/cyan]")
    if check_tmux_available():
        result = subprocess.run(["tmux", "-V"], capture_output=True, text=True, timeout=2)
        console.print(f"  [green]✓[/green] tmux: {result.stdout.strip()}")
    else:
        console.print("  [red]✗[/red] tmux not found")
        all_ok = False

    py_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    if sys.version_info >= (3, 11):
        console.print(f"  [green]✓[/green] Python {py_version}")
    else:
        console.print(f"  [red]✗[/red] Python {py_version} (need 3.11+)")
        all_ok = False

    console.print("\n[cyan]Agents:[/cyan]")
    has_agent = False
    for cls in EXECUTORS.values():
        if shutil.which(cls.binary):
            console.print(f"  [green]✓[/green] {cls.display_name} ({cls.binary})")
            has_agent = True
        else:
            console.print(f"  [dim]○[/dim] {cls.display_name} not installed")
    if not has_agent:
        console.print("  [yellow]![/yellow] No agent CLI found - install at least one")

    console.print("\n[cyan]Storage:[/cyan]")
    console.print(f"  [dim]home:[/dim] {settings.home}")
    console.print(f"  [dim]database:[/dim] {settings.db_path}")
    console.print(f"  [dim]activity log:[/dim] {settings.activity_log}")

    console.print("\n[cyan]Sessions:[/cyan]")
    tmux = make_tmux(settings)
    sessions = tmux.list_sessions()
    daemons = [s for s in sessions if s.startswith(settings.daemon_prefix)]
    if settings.ui_session in sessions:
        console.print(f"  [green]●[/green] {settings.ui_session}")
    else:
        console.print(f"  [dim]○[/dim] {settings.ui_session} not running")
    for name in daemons:
        console.print(f"  [green]●[/green] {name}")
    if not daemons:
        console.print("  [dim]○[/dim] No daemon session (one is created on first start)")

    console.print()
    if all_ok:
        console.print("[green]All critical checks passed![/green]")
    else:
        console.print("[red]Some checks failed.[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
