"""Focus & Dimension Tracker.

Layout preferences are stored as percentages. Measuring a pane in cells and
converting back is lossy, so a measured value is only persisted when it
differs from the join-time baseline by more than the resize tolerance;
otherwise the percentage that was applied at join time is kept as-is.
"""

from __future__ import annotations

from dataclasses import dataclass

from taskmux.activity import log_activity
from taskmux.config import (
    DEFAULT_DETAIL_PANE_HEIGHT,
    DEFAULT_SHELL_PANE_WIDTH,
    DETAIL_HEIGHT_RANGE,
    SETTING_DETAIL_PANE_HEIGHT,
    SETTING_SHELL_PANE_HIDDEN,
    SETTING_SHELL_PANE_WIDTH,
    SHELL_WIDTH_RANGE,
    Settings,
    format_percent,
    parse_percent,
)
from taskmux.models import round_percent
from taskmux.store import TaskStore
from taskmux.tmux_manager import TmuxError, TmuxManager


@dataclass
class Dimensions:
    """Control-pane height and shell width, as percentages (0 = unknown)."""

    height: int = 0
    width: int = 0


def _int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


class DimensionTracker:
    """Reads pane sizes and persists the user's layout preferences."""

    def __init__(self, tmux: TmuxManager, store: TaskStore, settings: Settings):
        self.tmux = tmux
        self.store = store
        self.settings = settings

    # -- preferences ---------------------------------------------------------

    def default_height(self) -> int:
        return parse_percent(self.store.get_setting(SETTING_DETAIL_PANE_HEIGHT),
                             DEFAULT_DETAIL_PANE_HEIGHT, DETAIL_HEIGHT_RANGE)

    def default_width(self) -> int:
        return parse_percent(self.store.get_setting(SETTING_SHELL_PANE_WIDTH),
                             DEFAULT_SHELL_PANE_WIDTH, SHELL_WIDTH_RANGE)

    def shell_hidden(self) -> bool:
        return self.store.get_setting(SETTING_SHELL_PANE_HIDDEN) == "true"

    def set_shell_hidden(self, hidden: bool) -> None:
        self.store.set_setting(SETTING_SHELL_PANE_HIDDEN, "true" if hidden else "false")

    def save_height(self, percent: int) -> bool:
        low, high = DETAIL_HEIGHT_RANGE
        if not low <= percent <= high:
            return False
        self.store.set_setting(SETTING_DETAIL_PANE_HEIGHT, format_percent(percent))
        return True

    def save_width(self, percent: int) -> bool:
        low, high = SHELL_WIDTH_RANGE
        if not low <= percent <= high:
            return False
        self.store.set_setting(SETTING_SHELL_PANE_WIDTH, format_percent(percent))
        return True

    # -- measuring -----------------------------------------------------------

    def control_height_percent(self, control_pane: str) -> int:
        """Control pane height as a rounded percentage of its window."""
        if not control_pane:
            return 0
        try:
            height = _int(self.tmux.query_pane(control_pane, "pane_height"))
            total = _int(self.tmux.query_pane(control_pane, "window_height"))
        except TmuxError:
            return 0
        if height <= 0 or total <= 0:
            return 0
        return round_percent(height, total)

    def shell_width_percent(self, agent_pane: str, shell_pane: str | None) -> int:
        """Shell width as a rounded percentage of the agent+shell row."""
        if not agent_pane or not shell_pane:
            return 0
        try:
            shell_width = _int(self.tmux.query_pane(shell_pane, "pane_width"))
            agent_width = _int(self.tmux.query_pane(agent_pane, "pane_width"))
        except TmuxError:
            return 0
        if shell_width <= 0 or agent_width <= 0:
            return 0
        return round_percent(shell_width, shell_width + agent_width)

    def measure(self, control_pane: str, agent_pane: str, shell_pane: str | None) -> Dimensions:
        return Dimensions(
            height=self.control_height_percent(control_pane),
            width=self.shell_width_percent(agent_pane, shell_pane),
        )

    def resized(self, current: int, baseline: int) -> bool:
        """True when ``current`` is outside the tolerance band around ``baseline``."""
        if current <= 0 or baseline <= 0:
            return False
        return abs(current - baseline) > self.settings.resize_tolerance

    def persist(self, current: Dimensions, baseline: Dimensions, applied: Dimensions, save: bool) -> None:
        """Store layout defaults after a view's panes are about to be broken.

        A user resize (beyond tolerance) always wins. Without one, ``save``
        re-stores the applied percentages, never the lossy measurement.
        """
        if self.resized(current.width, baseline.width):
            self.save_width(current.width)
            log_activity("layout.width_saved", {"width": current.width, "baseline": baseline.width})
        elif save and applied.width and current.width:
            self.save_width(applied.width)

        if self.resized(current.height, baseline.height):
            self.save_height(current.height)
            log_activity("layout.height_saved", {"height": current.height, "baseline": baseline.height})
        elif save and applied.height:
            self.save_height(applied.height)


class FocusTracker:
    """Cheap, frequent check of whether the control pane holds input focus."""

    def __init__(self, tmux: TmuxManager, settings: Settings):
        self.tmux = tmux
        self.settings = settings

    def is_focused(self, control_pane: str | None) -> bool:
        # Default to focused when there is nothing to compare against
        if not control_pane:
            return True
        try:
            active = self.tmux.active_pane(self.settings.ui_session)
        except TmuxError:
            return True
        return active == control_pane
