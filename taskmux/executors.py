"""Agent executors.

Each supported agent CLI gets one ``Executor`` subclass that knows how to
launch it fresh or resume a prior conversation. The executor for a task is
resolved once, from ``Task.agent_kind``, when a view or starter is built.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod

from taskmux.config import Settings
from taskmux.models import Task


def build_prompt(task: Task) -> str:
    """Synthesize the opening prompt for a fresh agent run."""
    prompt = f"# Task: {task.title}\n\n"
    if task.body:
        prompt += f"{task.body.strip()}\n\n"
    if task.workspace_path:
        prompt += f"Work inside {task.workspace_path}.\n"
    return prompt


def task_environment(task: Task, session_id: str) -> str:
    """Shell-quoted TASKMUX_* assignments describing a task."""
    pairs = {
        "TASKMUX_TASK_ID": str(task.id),
        "TASKMUX_SESSION_ID": session_id,
        "TASKMUX_WORKSPACE": task.workspace_path,
    }
    return " ".join(f"{key}={shlex.quote(value)}" for key, value in pairs.items())


class Executor(ABC):
    """Builds the shell command that runs an agent inside a tmux window."""

    kind: str = ""
    display_name: str = ""
    binary: str = ""
    dangerous_flag: str = ""

    def __init__(self, settings: Settings):
        self.settings = settings

    def name(self) -> str:
        return self.display_name

    def environment(self, task: Task) -> str:
        """Environment assignments prefixed to every launch command."""
        return task_environment(task, self.settings.session_id)

    def _flags(self, task: Task) -> list[str]:
        if self.dangerous_flag and (task.dangerous_mode or self.settings.dangerous_mode):
            return [self.dangerous_flag]
        return []

    @abstractmethod
    def build_command(self, task: Task, continuation_token: str, prompt: str) -> str:
        """Return the shell command for a resume (token set) or fresh run (prompt set)."""


class ClaudeExecutor(Executor):
    kind = "claude"
    display_name = "Claude"
    binary = "claude"
    dangerous_flag = "--dangerously-skip-permissions"

    def build_command(self, task: Task, continuation_token: str, prompt: str) -> str:
        args = [self.binary, *self._flags(task)]
        if continuation_token:
            args += ["--resume", continuation_token]
        elif prompt:
            args.append(prompt)
        return f"{self.environment(task)} {shlex.join(args)}"


class CodexExecutor(Executor):
    kind = "codex"
    display_name = "Codex"
    binary = "codex"
    dangerous_flag = "--dangerously-bypass-approvals-and-sandbox"

    def build_command(self, task: Task, continuation_token: str, prompt: str) -> str:
        if continuation_token:
            args = [self.binary, "resume", *self._flags(task), continuation_token]
        else:
            args = [self.binary, *self._flags(task)]
            if prompt:
                args.append(prompt)
        return f"{self.environment(task)} {shlex.join(args)}"


class GeminiExecutor(Executor):
    kind = "gemini"
    display_name = "Gemini"
    binary = "gemini"
    dangerous_flag = "--yolo"

    def build_command(self, task: Task, continuation_token: str, prompt: str) -> str:
        args = [self.binary, *self._flags(task)]
        if continuation_token:
            args += ["--resume", continuation_token]
        elif prompt:
            args += ["--prompt-interactive", prompt]
        return f"{self.environment(task)} {shlex.join(args)}"


EXECUTORS: dict[str, type[Executor]] = {
    cls.kind: cls for cls in (ClaudeExecutor, CodexExecutor, GeminiExecutor)
}
DEFAULT_EXECUTOR = ClaudeExecutor.kind


class UnknownExecutorError(ValueError):
    pass


def get_executor(kind: str, settings: Settings) -> Executor:
    """Resolve the executor for an agent kind (empty means the default)."""
    try:
        return EXECUTORS[kind or DEFAULT_EXECUTOR](settings)
    except KeyError:
        raise UnknownExecutorError(f"unknown agent kind {kind!r} (known: {', '.join(sorted(EXECUTORS))})") from None
