"""Tests for starting agent windows in the daemon session."""

from __future__ import annotations

import os

import pytest

from taskmux.models import LogKind, window_name
from taskmux.starter import PLACEHOLDER_WINDOW, SessionStarter, StartError, task_workdir


@pytest.fixture
def starter(tmux, store, settings) -> SessionStarter:
    return SessionStarter(tmux, store, settings)


class TestDaemonSession:
    def test_created_with_placeholder(self, starter, tmux) -> None:
        name = starter.ensure_daemon_session()
        assert name == "task-daemon-test"
        windows = [tmux.windows[w] for w in tmux.sessions[name]]
        assert [w.name for w in windows] == [PLACEHOLDER_WINDOW]

    def test_existing_session_is_reused(self, starter, tmux) -> None:
        tmux.new_session("task-daemon-other", PLACEHOLDER_WINDOW, "tail -f /dev/null")
        assert starter.ensure_daemon_session() == "task-daemon-other"
        assert "task-daemon-test" not in tmux.sessions

    def test_lost_creation_race(self, starter, tmux) -> None:
        def racing(name: str) -> bool:
            tmux.failures.pop("new_session")
            tmux.new_session("task-daemon-rival", PLACEHOLDER_WINDOW, "tail -f /dev/null")
            return True

        tmux.fail("new_session", racing)
        assert starter.ensure_daemon_session() == "task-daemon-rival"

    def test_creation_failure(self, starter, tmux) -> None:
        tmux.fail("new_session")
        with pytest.raises(StartError, match="could not create daemon session"):
            starter.ensure_daemon_session()


class TestStart:
    def test_creates_agent_and_shell(self, starter, tmux, store, make_task) -> None:
        task = make_task()
        window = starter.start(task)

        assert tmux.windows[window.window_id].name == window_name(task.id)
        agent, shell = tmux.windows[window.window_id].pane_ids()
        assert tmux.panes[agent].title == "Claude"
        assert tmux.panes[shell].title == "Shell"
        assert "claude" in tmux.panes[agent].command
        assert "TASKMUX_TASK_ID=" in tmux.panes[agent].command

        saved = store.get_task(task.id)
        assert saved.canonical_window_id == window.window_id
        assert saved.daemon_session == window.session_name
        assert (saved.agent_pane_id, saved.shell_pane_id) == (agent, shell)
        assert [(l.kind, l.text) for l in store.get_task_logs(task.id)] == [
            (LogKind.SYSTEM, "Starting Claude session")
        ]

    def test_resume_with_token(self, starter, tmux, store, make_task) -> None:
        task = make_task(continuation_token="c0ffee")
        window = starter.start(task)
        agent = tmux.windows[window.window_id].pane_ids()[0]
        assert "--resume c0ffee" in tmux.panes[agent].command
        assert store.get_task_logs(task.id)[0].text == "Reconnecting to session c0ffee"

    def test_existing_window_is_reused(self, starter, tmux, make_task) -> None:
        task = make_task()
        first = starter.start(task)
        assert starter.start(task) == first
        assert tmux.created_windows == [window_name(task.id)]

    def test_agent_exits_immediately(self, starter, tmux, store, make_task) -> None:
        task = make_task()
        tmux.exit_on_create = True
        with pytest.raises(StartError, match="exited before its window was ready"):
            starter.start(task)
        assert store.get_task(task.id).canonical_window_id == ""

    def test_create_window_refused(self, starter, tmux, make_task) -> None:
        tmux.fail("create_window")
        with pytest.raises(StartError, match="failed to create agent window"):
            starter.start(make_task())

    def test_shell_split_failure_is_not_fatal(self, starter, tmux, store, make_task) -> None:
        task = make_task()
        tmux.fail("split_pane")
        window = starter.start(task)
        assert len(tmux.windows[window.window_id].pane_ids()) == 1
        assert store.get_task(task.id).shell_pane_id == ""

    def test_missing_workspace_uses_home(self, make_task) -> None:
        assert task_workdir(make_task(workspace_path="/does/not/exist")) == os.path.expanduser("~")

    def test_existing_workspace(self, make_task, tmp_path) -> None:
        assert task_workdir(make_task(workspace_path=str(tmp_path))) == str(tmp_path)
