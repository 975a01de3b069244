"""Hiding and showing the companion shell pane."""

from __future__ import annotations

import pytest

from taskmux.models import LogKind, hidden_shell_window_name
from taskmux.reconciler import PaneReconciler
from taskmux.shell import ShellToggle, has_running_shell_process
from taskmux.starter import SessionStarter


@pytest.fixture
def reconciler(tmux, store, settings) -> PaneReconciler:
    return PaneReconciler(tmux, store, settings)


@pytest.fixture
def toggle(tmux, store, settings, reconciler) -> ShellToggle:
    return ShellToggle(tmux, store, settings, reconciler)


@pytest.fixture
def joined(tmux, store, settings, reconciler, control_pane, make_task):
    task = make_task()
    window = SessionStarter(tmux, store, settings).start(task)
    return task, reconciler.join(task, window, control_pane)


class TestHasRunningShellProcess:
    @pytest.mark.parametrize("command", ["zsh", "bash", "fish", "sh"])
    def test_idle_shell(self, tmux, control_pane, command) -> None:
        tmux.panes[control_pane].current_command = command
        assert not has_running_shell_process(tmux, control_pane)

    def test_busy_shell(self, tmux, control_pane) -> None:
        tmux.panes[control_pane].current_command = "pytest"
        assert has_running_shell_process(tmux, control_pane)

    def test_login_shell_counts_as_idle(self, tmux, control_pane, monkeypatch) -> None:
        monkeypatch.setenv("SHELL", "/opt/bin/xonsh")
        tmux.panes[control_pane].current_command = "xonsh"
        assert not has_running_shell_process(tmux, control_pane)

    def test_missing_pane(self, tmux) -> None:
        assert not has_running_shell_process(tmux, "%404")
        assert not has_running_shell_process(tmux, "")


class TestHide:
    def test_hide_parks_shell_in_its_own_window(self, toggle, tmux, store, control_pane, joined) -> None:
        task, result = joined
        shell = result.binding.shell_pane_id
        tmux.panes[shell].current_command = "npm"

        outcome = toggle.hide(task, result.binding, result.applied.width, result.baseline.width)

        assert outcome.hidden
        assert outcome.binding.shell_pane_id is None
        assert tmux.window_of(shell).name == hidden_shell_window_name(task.id)
        assert tmux.list_panes(control_pane) == [control_pane, result.binding.agent_pane_id]
        assert store.get_setting("shell_pane_hidden") == "true"
        assert store.get_task(task.id).shell_pane_id == shell
        assert tmux.killed == []

    def test_hide_saves_resized_width(self, toggle, tmux, store, joined) -> None:
        task, result = joined
        tmux.resize_pane(result.binding.shell_pane_id, "width", 30)
        toggle.hide(task, result.binding, result.applied.width, result.baseline.width)
        assert store.get_setting("shell_pane_width") == "30%"

    def test_stale_hidden_window_is_not_reused(self, toggle, tmux, control_pane, joined) -> None:
        task, result = joined
        shell = result.binding.shell_pane_id
        stale_window, stale_pane = tmux.create_window(result.window.session_name, hidden_shell_window_name(task.id),
                                                      "/tmp", "sh")

        outcome = toggle.hide(task, result.binding, result.applied.width, result.baseline.width)

        assert outcome.hidden
        assert tmux.window_of(shell).pane_ids() == [shell]
        assert tmux.windows[stale_window].pane_ids() == [stale_pane]

    def test_failed_hide_keeps_shell_visible(self, toggle, tmux, store, control_pane, joined) -> None:
        task, result = joined
        shell = result.binding.shell_pane_id
        tmux.fail("break_pane")

        outcome = toggle.hide(task, result.binding, result.applied.width, result.baseline.width)

        assert not outcome.hidden
        assert outcome.binding.shell_pane_id == shell
        assert shell in tmux.list_panes(control_pane)
        assert store.get_task_logs(task.id)[-1].kind == LogKind.ERROR


class TestShow:
    def test_show_rejoins_the_same_pane(self, toggle, tmux, store, control_pane, joined) -> None:
        task, result = joined
        shell = result.binding.shell_pane_id
        hidden = toggle.hide(task, result.binding, result.applied.width, result.baseline.width)

        outcome = toggle.show(task, hidden.binding)

        assert not outcome.hidden
        assert outcome.binding.shell_pane_id == shell
        assert tmux.list_panes(control_pane) == [control_pane, result.binding.agent_pane_id, shell]
        assert outcome.applied_width == 50
        assert outcome.baseline_width == 50
        assert store.get_setting("shell_pane_hidden") == "false"
        assert tmux.windows_named(hidden_shell_window_name(task.id)) == []

    def test_show_creates_fresh_shell_when_hidden_one_exited(self, toggle, tmux, store, control_pane,
                                                             joined) -> None:
        task, result = joined
        old_shell = result.binding.shell_pane_id
        hidden = toggle.hide(task, result.binding, result.applied.width, result.baseline.width)
        tmux.exit_pane(old_shell)

        outcome = toggle.show(task, hidden.binding)

        new_shell = outcome.binding.shell_pane_id
        assert new_shell is not None
        assert new_shell != old_shell
        assert new_shell in tmux.list_panes(control_pane)
        assert store.get_task(task.id).shell_pane_id == new_shell
