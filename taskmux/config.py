"""Configuration for taskmux.

Settings come from environment variables so that the dashboard, the agent
windows it launches and any helper scripts running inside those windows all
agree on session names and storage locations.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

HOME_ENV_VAR = "TASKMUX_HOME"
DB_ENV_VAR = "TASKMUX_DB"
UI_SESSION_ENV_VAR = "TASKMUX_UI_SESSION"
DAEMON_PREFIX_ENV_VAR = "TASKMUX_DAEMON_PREFIX"
SOCKET_ENV_VAR = "TASKMUX_TMUX_SOCKET"
DANGEROUS_MODE_ENV_VAR = "TASKMUX_DANGEROUS_MODE"
SESSION_ID_ENV_VAR = "TASKMUX_SESSION_ID"

# Layout preference keys (stored through the task store's settings table)
SETTING_DETAIL_PANE_HEIGHT = "detail_pane_height"
SETTING_SHELL_PANE_WIDTH = "shell_pane_width"
SETTING_SHELL_PANE_HIDDEN = "shell_pane_hidden"

DEFAULT_DETAIL_PANE_HEIGHT = 20
DEFAULT_SHELL_PANE_WIDTH = 50
DETAIL_HEIGHT_RANGE = (1, 50)
SHELL_WIDTH_RANGE = (10, 90)


class Timeouts(BaseModel):
    """Per-call timeouts (seconds) for external tmux/process commands."""

    focus: float = 0.2
    query: float = 2.0
    mutate: float = 5.0
    session: float = 10.0


class Intervals(BaseModel):
    """Timer periods (seconds) for the detail view."""

    spinner: float = 0.1
    focus: float = 0.3
    reconcile: float = 3.0


class Settings(BaseModel):
    """Runtime settings for the dashboard and reconciliation engine."""

    home: Path = Field(description="Directory holding the database and activity log")
    db_path: Path = Field(description="SQLite task store")
    ui_session: str = Field(default="task-ui", description="Foreground tmux session")
    daemon_prefix: str = Field(default="task-daemon-", description="Prefix of background sessions")
    socket_name: str | None = Field(default=None, description="tmux -L socket name")
    dangerous_mode: bool = False
    session_id: str = Field(default_factory=lambda: str(os.getpid()))
    timeouts: Timeouts = Field(default_factory=Timeouts)
    intervals: Intervals = Field(default_factory=Intervals)
    # Tolerance (percentage points) before a pane dimension counts as a user resize
    resize_tolerance: int = 2

    @property
    def activity_log(self) -> Path:
        return self.home / "activity.jsonl"

    @property
    def daemon_session_name(self) -> str:
        """Name used when this process has to create a daemon session itself."""
        return f"{self.daemon_prefix}{self.session_id}"


def default_home() -> Path:
    return Path.home() / ".local" / "share" / "taskmux"


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Build settings from the environment (or an explicit mapping)."""
    env = os.environ if env is None else env
    home = Path(env.get(HOME_ENV_VAR) or default_home()).expanduser()
    data: dict = {
        "home": home,
        "db_path": Path(env.get(DB_ENV_VAR) or home / "tasks.db").expanduser(),
        "dangerous_mode": env.get(DANGEROUS_MODE_ENV_VAR) == "1",
    }
    if env.get(UI_SESSION_ENV_VAR):
        data["ui_session"] = env[UI_SESSION_ENV_VAR]
    if env.get(DAEMON_PREFIX_ENV_VAR):
        data["daemon_prefix"] = env[DAEMON_PREFIX_ENV_VAR]
    if env.get(SOCKET_ENV_VAR):
        data["socket_name"] = env[SOCKET_ENV_VAR]
    if env.get(SESSION_ID_ENV_VAR):
        data["session_id"] = env[SESSION_ID_ENV_VAR]
    return Settings(**data)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return load_settings()


def ensure_home(settings: Settings) -> Path:
    """Create the data directory if needed and return it."""
    settings.home.mkdir(parents=True, exist_ok=True)
    return settings.home


def parse_percent(value: str | None, default: int, valid: tuple[int, int]) -> int:
    """Parse a stored ``"NN%"`` preference, falling back to ``default``.

    Values outside ``valid`` (inclusive) or that don't parse are ignored.
    """
    if not value or not value.endswith("%"):
        return default
    try:
        percent = int(value[:-1])
    except ValueError:
        return default
    low, high = valid
    if low <= percent <= high:
        return percent
    return default


def format_percent(percent: int) -> str:
    return f"{percent}%"
