"""Tests for the click command line."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from taskmux import cli
from taskmux.activity import log_activity
from taskmux.models import LogKind, TaskStatus
from taskmux.store import TaskStore
from tests.fake_tmux import FakeTmux


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake_tmux(monkeypatch: pytest.MonkeyPatch) -> FakeTmux:
    fake = FakeTmux()
    monkeypatch.setattr(cli, "make_tmux", lambda settings: fake)
    return fake


def read_store(settings) -> TaskStore:
    return TaskStore(settings.db_path)


class TestTaskCommands:
    def test_add(self, runner, settings, tmp_path) -> None:
        result = runner.invoke(cli.main, ["add", "Fix flaky test", "--status", "queued", "--agent", "codex",
                                          "-w", str(tmp_path), "--token", "t1"])
        assert result.exit_code == 0, result.output
        assert "Created task 1: Fix flaky test" in result.output

        store = read_store(settings)
        task = store.get_task(1)
        store.close()
        assert task.status == TaskStatus.QUEUED
        assert task.agent_kind == "codex"
        assert task.workspace_path == str(tmp_path)
        assert task.continuation_token == "t1"

    def test_add_rejects_unknown_agent(self, runner, settings) -> None:
        result = runner.invoke(cli.main, ["add", "x", "--agent", "aider"])
        assert result.exit_code != 0

    def test_list(self, runner, settings, store) -> None:
        store.add_task("Alpha", status=TaskStatus.QUEUED)
        store.add_task("Beta", status=TaskStatus.DONE)

        result = runner.invoke(cli.main, ["list"])
        assert result.exit_code == 0
        assert "Alpha" in result.output
        assert "Beta" in result.output

        result = runner.invoke(cli.main, ["list", "--status", "done"])
        assert "Alpha" not in result.output
        assert "Beta" in result.output

    def test_list_empty(self, runner, settings) -> None:
        result = runner.invoke(cli.main, ["list"])
        assert "No tasks" in result.output

    def test_move(self, runner, settings, store) -> None:
        task = store.add_task("Alpha")
        result = runner.invoke(cli.main, ["move", str(task.id), "blocked"])
        assert result.exit_code == 0
        assert store.get_task(task.id).status == TaskStatus.BLOCKED

    def test_move_missing_task(self, runner, settings) -> None:
        result = runner.invoke(cli.main, ["move", "42", "done"])
        assert result.exit_code == 1
        assert "No task 42" in result.output

    def test_history(self, runner, settings, store) -> None:
        task = store.add_task("Alpha")
        store.append_task_log(task.id, LogKind.SYSTEM, "Starting Claude session")
        store.append_task_log(task.id, LogKind.ERROR, "window vanished")

        result = runner.invoke(cli.main, ["history", str(task.id)])
        assert result.exit_code == 0
        assert "Starting Claude session" in result.output
        assert "window vanished" in result.output


class TestPanes:
    def test_shows_window_and_panes(self, runner, settings, store, fake_tmux) -> None:
        from taskmux.starter import SessionStarter

        task = store.add_task("Alpha", status=TaskStatus.QUEUED)
        window = SessionStarter(fake_tmux, store, settings).start(task)

        result = runner.invoke(cli.main, ["panes", str(task.id)])
        assert result.exit_code == 0, result.output
        assert window.window_id in result.output
        assert task.agent_pane_id in result.output
        assert "20%" in result.output

    def test_not_running(self, runner, settings, store, fake_tmux) -> None:
        task = store.add_task("Alpha")
        result = runner.invoke(cli.main, ["panes", str(task.id)])
        assert result.exit_code == 0
        assert "none" in result.output
        assert "not running" in result.output


class TestLogs:
    def test_shows_entries(self, runner, settings) -> None:
        log_activity("join.begin", {"window_id": "@3"}, task_id=7)
        log_activity("join.debug_detail", level="debug", task_id=7)

        result = runner.invoke(cli.main, ["logs"])
        assert result.exit_code == 0
        assert "join.begin" in result.output
        assert "join.debug_detail" not in result.output

        result = runner.invoke(cli.main, ["logs", "--level", "debug"])
        assert "join.debug_detail" in result.output

    def test_clear(self, runner, settings) -> None:
        log_activity("join.begin")
        result = runner.invoke(cli.main, ["logs", "--clear"], input="y\n")
        assert result.exit_code == 0
        assert not settings.activity_log.exists()


class TestOpen:
    def test_requires_tmux(self, runner, settings, monkeypatch) -> None:
        monkeypatch.setattr(cli, "check_tmux_available", lambda: False)
        result = runner.invoke(cli.main, ["open", "1"])
        assert result.exit_code == 1
        assert "tmux not found" in result.output

    def test_unknown_task(self, runner, settings, monkeypatch) -> None:
        monkeypatch.setattr(cli, "check_tmux_available", lambda: True)
        result = runner.invoke(cli.main, ["open", "99"])
        assert result.exit_code == 1
        assert "No task 99" in result.output

    def test_reexecs_inside_tmux(self, runner, settings, store, fake_tmux, monkeypatch) -> None:
        task = store.add_task("Alpha")
        calls = []
        monkeypatch.setattr(cli, "check_tmux_available", lambda: True)
        monkeypatch.setattr(cli.os, "execvp", lambda file, args: calls.append(args))

        result = runner.invoke(cli.main, ["open", str(task.id), "--focus-agent"])

        assert result.exit_code == 0, result.output
        command = calls[0]
        assert command[:5] == ["tmux", "new-session", "-A", "-s", "task-ui"]
        assert command[5].endswith(f"open {task.id} --focus-agent")

    def test_runs_dashboard(self, runner, settings, store, fake_tmux, monkeypatch) -> None:
        task = store.add_task("Alpha")
        fake_tmux.setup_ui(settings.ui_session)
        seen = {}
        monkeypatch.setattr(cli, "check_tmux_available", lambda: True)
        monkeypatch.setattr("taskmux.dashboard.run_dashboard",
                            lambda task, store, settings, focus_agent=False: seen.update(task=task, focus=focus_agent))

        result = runner.invoke(cli.main, ["open", str(task.id)])

        assert result.exit_code == 0, result.output
        assert seen["task"].id == task.id
        assert seen["focus"] is False


class TestDoctor:
    def test_reports_missing_tmux(self, runner, settings, fake_tmux, monkeypatch) -> None:
        monkeypatch.setattr(cli, "check_tmux_available", lambda: False)
        monkeypatch.setattr(cli.shutil, "which", lambda binary: "/usr/bin/claude" if binary == "claude" else None)

        result = runner.invoke(cli.main, ["doctor"])

        assert result.exit_code == 1
        assert "tmux not found" in result.output
        assert "Claude (claude)" in result.output
        assert "Codex not installed" in result.output
        assert "No daemon session" in result.output
