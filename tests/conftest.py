"""Shared fixtures: isolated TASKMUX_HOME, a real SQLite store, fake tmux."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskmux.config import Settings, get_settings
from taskmux.controller import DetailController
from taskmux.models import Task, TaskStatus
from taskmux.store import TaskStore
from tests.fake_tmux import FakeTmux, ManualScheduler


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("TASKMUX_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("TASKMUX_SESSION_ID", "test")
    for name in ("TASKMUX_DB", "TASKMUX_UI_SESSION", "TASKMUX_DAEMON_PREFIX",
                 "TASKMUX_TMUX_SOCKET", "TASKMUX_DANGEROUS_MODE"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def store(settings: Settings) -> TaskStore:
    s = TaskStore(settings.db_path)
    yield s
    s.close()


@pytest.fixture
def tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def control_pane(tmux: FakeTmux, settings: Settings) -> str:
    return tmux.setup_ui(settings.ui_session)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def controller(tmux, store, settings, scheduler, control_pane) -> DetailController:
    return DetailController(tmux, store, settings, scheduler, control_pane)


@pytest.fixture
def make_task(store: TaskStore, tmp_path: Path):
    def factory(title: str = "Fix login redirect", status: TaskStatus = TaskStatus.QUEUED, **kwargs) -> Task:
        kwargs.setdefault("workspace_path", str(tmp_path))
        return store.add_task(title, status=status, **kwargs)

    return factory
