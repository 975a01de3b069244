"""Tests for drift-free layout persistence and focus tracking."""

from __future__ import annotations

import pytest
from libtmux.constants import PaneDirection

from taskmux.layout import Dimensions, DimensionTracker, FocusTracker


@pytest.fixture
def dims(tmux, store, settings) -> DimensionTracker:
    return DimensionTracker(tmux, store, settings)


class TestPreferences:
    def test_defaults(self, dims) -> None:
        assert dims.default_height() == 20
        assert dims.default_width() == 50
        assert not dims.shell_hidden()

    def test_invalid_stored_value_ignored(self, dims, store) -> None:
        store.set_setting("detail_pane_height", "75%")
        store.set_setting("shell_pane_width", "wide")
        assert dims.default_height() == 20
        assert dims.default_width() == 50

    def test_out_of_range_save_rejected(self, dims, store) -> None:
        assert not dims.save_height(0)
        assert not dims.save_width(95)
        assert store.get_setting("detail_pane_height") is None

    def test_shell_hidden_round_trip(self, dims) -> None:
        dims.set_shell_hidden(True)
        assert dims.shell_hidden()
        dims.set_shell_hidden(False)
        assert not dims.shell_hidden()


class TestPersist:
    @pytest.mark.parametrize("current", [18, 19, 20, 21, 22])
    def test_within_tolerance_saves_applied(self, dims, store, current) -> None:
        dims.persist(Dimensions(current, 49), Dimensions(20, 50), Dimensions(20, 50), save=True)
        assert store.get_setting("detail_pane_height") == "20%"
        assert store.get_setting("shell_pane_width") == "50%"

    def test_user_resize_beyond_tolerance_wins(self, dims, store) -> None:
        dims.persist(Dimensions(30, 35), Dimensions(20, 50), Dimensions(20, 50), save=False)
        assert store.get_setting("detail_pane_height") == "30%"
        assert store.get_setting("shell_pane_width") == "35%"

    def test_no_save_leaves_preferences_alone(self, dims, store) -> None:
        dims.persist(Dimensions(21, 51), Dimensions(20, 50), Dimensions(20, 50), save=False)
        assert store.get_setting("detail_pane_height") is None
        assert store.get_setting("shell_pane_width") is None

    def test_unknown_measurement_is_not_a_resize(self, dims, store) -> None:
        dims.persist(Dimensions(0, 0), Dimensions(20, 50), Dimensions(20, 50), save=True)
        assert store.get_setting("detail_pane_height") == "20%"
        # No shell was measured, so its width is left untouched
        assert store.get_setting("shell_pane_width") is None

    def test_resized(self, dims) -> None:
        assert not dims.resized(22, 20)
        assert dims.resized(23, 20)
        assert dims.resized(17, 20)
        assert not dims.resized(0, 20)


class TestMeasure:
    def test_control_height(self, dims, tmux, control_pane) -> None:
        tmux.split_pane(control_pane, PaneDirection.Below, 80, "/tmp")
        # 9 rows of 50
        assert dims.control_height_percent(control_pane) == 18

    def test_shell_width(self, dims, tmux, control_pane) -> None:
        shell = tmux.split_pane(control_pane, PaneDirection.Right, 35, "/tmp")
        assert dims.shell_width_percent(control_pane, shell) == 35

    def test_missing_panes_measure_zero(self, dims) -> None:
        assert dims.measure("%404", "%405", None) == Dimensions(0, 0)
        assert dims.control_height_percent("") == 0


class TestFocusTracker:
    def test_focused_when_control_active(self, tmux, settings, control_pane) -> None:
        assert FocusTracker(tmux, settings).is_focused(control_pane)

    def test_unfocused_when_other_pane_active(self, tmux, settings, control_pane) -> None:
        other = tmux.split_pane(control_pane, PaneDirection.Below, None, "/tmp")
        tmux.select_pane(other)
        assert not FocusTracker(tmux, settings).is_focused(control_pane)

    def test_errors_count_as_focused(self, tmux, settings, control_pane) -> None:
        tmux.fail("active_pane")
        assert FocusTracker(tmux, settings).is_focused(control_pane)
        assert FocusTracker(tmux, settings).is_focused(None)
