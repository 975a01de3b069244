"""Tmux access for taskmux.

Server and session discovery go through libtmux. Window and pane operations
shell out to ``tmux`` directly so that every call carries an explicit
timeout; an unresponsive tmux server must never hang the dashboard.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass

import libtmux
from libtmux.constants import PaneDirection
from libtmux.exc import LibTmuxException

from taskmux.config import Timeouts

# Field separator for -F formats (window names are ours and never contain it)
SEP = "|"

_DIRECTION_FLAGS = {
    PaneDirection.Below: ["-v"],
    PaneDirection.Above: ["-v", "-b"],
    PaneDirection.Right: ["-h"],
    PaneDirection.Left: ["-h", "-b"],
}


class TmuxError(Exception):
    """A tmux command failed, timed out, or tmux is missing."""

    def __init__(self, args: tuple[str, ...] | list[str], message: str):
        self.command = list(args)
        self.message = message
        super().__init__(f"tmux {' '.join(self.command[:2])}: {message}")


@dataclass
class WindowInfo:
    """A tmux window as seen by ``list-windows``."""

    session_name: str
    window_id: str
    window_name: str


@dataclass
class PaneInfo:
    """Information about a tmux pane."""

    pane_id: str
    window_id: str
    session_name: str
    width: int
    height: int
    active: bool
    current_command: str | None = None


class TmuxManager:
    """Thin, timeout-guarded wrapper around the tmux control CLI."""

    def __init__(self, socket_name: str | None = None, timeouts: Timeouts | None = None):
        self.socket_name = socket_name
        self.timeouts = timeouts or Timeouts()
        self.server = libtmux.Server(socket_name=socket_name)

    # -- plumbing ------------------------------------------------------------

    def _argv(self, *args: str) -> list[str]:
        argv = ["tmux"]
        if self.socket_name:
            argv += ["-L", self.socket_name]
        return argv + list(args)

    def run(self, *args: str, timeout: float | None = None) -> str:
        """Run a tmux command and return its stdout (trailing newline stripped)."""
        timeout = self.timeouts.mutate if timeout is None else timeout
        try:
            result = subprocess.run(
                self._argv(*args),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise TmuxError(args, "tmux not found") from None
        except subprocess.TimeoutExpired:
            raise TmuxError(args, f"timed out after {timeout}s") from None
        if result.returncode != 0:
            raise TmuxError(args, result.stderr.strip() or f"exit status {result.returncode}")
        return result.stdout.rstrip("\n")

    def is_inside_tmux(self) -> bool:
        return "TMUX" in os.environ

    def current_pane_id(self) -> str | None:
        """Pane this process runs in (if inside tmux)."""
        if not self.is_inside_tmux():
            return None
        return os.environ.get("TMUX_PANE")

    # -- sessions (libtmux) --------------------------------------------------

    def list_sessions(self) -> list[str]:
        try:
            return [s.session_name for s in self.server.sessions if s.session_name]
        except LibTmuxException:
            return []

    def has_session(self, name: str) -> bool:
        try:
            return self.server.has_session(name)
        except LibTmuxException:
            return False

    def new_session(self, name: str, window_name: str, command: str) -> None:
        """Create a detached session whose first window runs ``command``."""
        try:
            self.server.new_session(
                session_name=name,
                window_name=window_name,
                window_command=command,
                attach=False,
            )
        except LibTmuxException as e:
            raise TmuxError(("new-session", "-s", name), str(e)) from e

    # -- windows -------------------------------------------------------------

    def list_windows(self, session_prefix: str | None = None) -> list[WindowInfo]:
        """List windows across all sessions, optionally filtered by session prefix."""
        fmt = SEP.join(["#{session_name}", "#{window_id}", "#{window_name}"])
        out = self.run("list-windows", "-a", "-F", fmt, timeout=self.timeouts.query)
        windows = []
        for line in out.splitlines():
            parts = line.split(SEP, 2)
            if len(parts) != 3:
                continue
            info = WindowInfo(session_name=parts[0], window_id=parts[1], window_name=parts[2])
            if session_prefix and not info.session_name.startswith(session_prefix):
                continue
            windows.append(info)
        return windows

    def window_info(self, window_id: str) -> WindowInfo | None:
        """Look up a window by id; None if it no longer exists."""
        if not window_id:
            return None
        fmt = SEP.join(["#{session_name}", "#{window_id}", "#{window_name}"])
        try:
            out = self.run("display-message", "-p", "-t", window_id, fmt, timeout=self.timeouts.query)
        except TmuxError:
            return None
        parts = out.split(SEP, 2)
        if len(parts) != 3 or parts[1] != window_id:
            return None
        return WindowInfo(session_name=parts[0], window_id=parts[1], window_name=parts[2])

    def create_window(self, session: str, name: str, cwd: str, command: str) -> tuple[str, str]:
        """Create a detached window; returns ``(window_id, pane_id)``."""
        out = self.run(
            "new-window", "-d", "-P", "-F", f"#{{window_id}}{SEP}#{{pane_id}}",
            "-t", f"{session}:", "-n", name, "-c", cwd, command,
            timeout=self.timeouts.session,
        )
        window_id, _, pane_id = out.partition(SEP)
        return window_id, pane_id

    # -- panes ---------------------------------------------------------------

    def list_panes(self, target: str) -> list[str]:
        """Pane ids of a window (or of the current window of a session), in index order."""
        out = self.run("list-panes", "-t", target, "-F", "#{pane_id}", timeout=self.timeouts.query)
        return [line for line in out.splitlines() if line]

    def split_pane(
        self,
        target: str,
        direction: PaneDirection,
        size_percent: int | None,
        cwd: str,
        command: str | None = None,
    ) -> str:
        """Split ``target`` without moving focus; returns the new pane id."""
        args = ["split-window", "-d", "-P", "-F", "#{pane_id}", *_DIRECTION_FLAGS[direction]]
        if size_percent:
            args += ["-l", f"{size_percent}%"]
        args += ["-t", target, "-c", cwd]
        if command:
            args.append(command)
        return self.run(*args)

    def join_pane(
        self,
        source: str,
        target: str,
        direction: PaneDirection,
        size_percent: int | None = None,
        detached: bool = True,
    ) -> None:
        """Move pane ``source`` next to ``target`` (a pane or window)."""
        args = ["join-pane", *_DIRECTION_FLAGS[direction]]
        if detached:
            args.append("-d")
        if size_percent:
            args += ["-l", f"{size_percent}%"]
        args += ["-s", source, "-t", target]
        self.run(*args)

    def break_pane(self, source: str, target_session: str, window_name: str) -> str:
        """Move pane ``source`` into a new window of ``target_session``; returns its id."""
        return self.run(
            "break-pane", "-d", "-P", "-F", "#{window_id}",
            "-s", source, "-t", f"{target_session}:", "-n", window_name,
        )

    def kill_pane(self, pane_id: str) -> None:
        self.run("kill-pane", "-t", pane_id)

    def resize_pane(self, pane_id: str, dimension: str, size_percent: int) -> None:
        """Resize a pane's ``height`` or ``width`` to a percentage of its window."""
        flag = "-y" if dimension == "height" else "-x"
        self.run("resize-pane", "-t", pane_id, flag, f"{size_percent}%")

    def query_pane(self, pane_id: str, field: str, timeout: float | None = None) -> str:
        """Return a format variable (e.g. ``pane_height``) for a pane."""
        timeout = self.timeouts.query if timeout is None else timeout
        return self.run("display-message", "-p", "-t", pane_id, f"#{{{field}}}", timeout=timeout)

    def pane_exists(self, pane_id: str) -> bool:
        if not pane_id:
            return False
        try:
            return self.query_pane(pane_id, "pane_id") == pane_id
        except TmuxError:
            return False

    def active_pane(self, session: str) -> str:
        """Pane holding input focus in ``session``; uses the hot-path timeout."""
        return self.run("display-message", "-p", "-t", session, "#{pane_id}", timeout=self.timeouts.focus)

    def select_pane(self, pane_id: str) -> None:
        self.run("select-pane", "-t", pane_id, timeout=self.timeouts.query)

    def set_pane_title(self, pane_id: str, title: str) -> None:
        self.run("select-pane", "-t", pane_id, "-T", title, timeout=self.timeouts.query)

    def send_keys(self, pane_id: str, text: str, enter: bool = True) -> None:
        args = ["send-keys", "-t", pane_id, text]
        if enter:
            args.append("Enter")
        self.run(*args)

    def bind_key(self, table: str, key: str, *command: str) -> None:
        self.run("bind-key", "-T", table, key, *command)

    def unbind_key(self, table: str, key: str) -> None:
        self.run("unbind-key", "-T", table, key)

    def set_option(self, target: str, option: str, value: str) -> None:
        self.run("set-option", "-t", target, option, value, timeout=self.timeouts.query)

    def pane_info(self, pane_id: str) -> PaneInfo | None:
        """Get information about a pane."""
        fields = ["pane_id", "window_id", "session_name", "pane_width", "pane_height",
                  "pane_active", "pane_current_command"]
        fmt = SEP.join(f"#{{{f}}}" for f in fields)
        try:
            out = self.run("display-message", "-p", "-t", pane_id, fmt, timeout=self.timeouts.query)
        except TmuxError:
            return None
        parts = out.split(SEP)
        if len(parts) != len(fields) or parts[0] != pane_id:
            return None
        return PaneInfo(
            pane_id=parts[0],
            window_id=parts[1],
            session_name=parts[2],
            width=int(parts[3] or 0),
            height=int(parts[4] or 0),
            active=parts[5] == "1",
            current_command=parts[6] or None,
        )

    def pane_memory_mb(self, pane_id: str, process_name: str = "") -> int:
        """Resident memory (MB) of the agent process in a pane; 0 when unknown."""
        try:
            shell_pid = self.query_pane(pane_id, "pane_pid")
        except TmuxError:
            return 0
        if not shell_pid:
            return 0

        pid = shell_pid
        try:
            child = subprocess.run(
                ["pgrep", "-P", shell_pid, *([process_name] if process_name else [])],
                capture_output=True,
                text=True,
                timeout=self.timeouts.query,
            )
            if child.returncode == 0 and child.stdout.strip():
                pid = child.stdout.split()[0]
            rss = subprocess.run(
                ["ps", "-o", "rss=", "-p", pid],
                capture_output=True,
                text=True,
                timeout=self.timeouts.query,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return 0
        try:
            return int(rss.stdout.strip()) // 1024
        except ValueError:
            return 0


def check_tmux_available() -> bool:
    """Check if tmux is available on the system."""
    try:
        result = subprocess.run(
            ["tmux", "-V"],
            capture_output=True,
            text=True,
            timeout=2,
        )
        return result.returncode == 0
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False
