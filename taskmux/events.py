"""Single-consumer event loop for the dashboard.

Messages are handled one at a time on the asyncio loop thread. Blocking tmux
work runs in worker threads via :meth:`EventLoop.spawn`; each unit posts
exactly one message back when it finishes.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable

from taskmux.activity import log_activity
from taskmux.messages import Message, UnitFailed


class EventLoop:
    def __init__(self):
        self._queue: asyncio.Queue[Message] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._units: set[asyncio.Task] = set()
        self._timers: list[asyncio.TimerHandle] = []
        self._running = False
        # Messages posted from other threads before the loop is known
        self._early: list[Message] = []
        self._lock = threading.Lock()
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def post(self, message: Message) -> None:
        """Queue a message; safe to call from any thread."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        with self._lock:
            if self._loop is None:
                if running is None:
                    self._early.append(message)
                    return
                self._loop = running
        if running is self._loop:
            self._queue.put_nowait(message)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    def spawn(self, name: str, fn: Callable[..., Message], *args) -> asyncio.Task:
        """Run ``fn(*args)`` in a worker thread and post the message it returns."""

        async def unit() -> None:
            try:
                message = await asyncio.to_thread(fn, *args)
            except Exception as e:
                log_activity("unit.failed", {"unit": name, "error": str(e)}, level="error")
                message = UnitFailed(name, str(e))
            if not isinstance(message, Message):
                message = UnitFailed(name, f"returned {type(message).__name__}, not a message")
            self._queue.put_nowait(message)

        task = self.loop.create_task(unit(), name=name)
        self._units.add(task)
        task.add_done_callback(self._units.discard)
        return task

    def after(self, delay: float, message: Message) -> None:
        self._timers = [t for t in self._timers if not t.cancelled()]
        self._timers.append(self.loop.call_later(delay, self._queue.put_nowait, message))

    async def next(self) -> Message:
        return await self._queue.get()

    async def drain(self) -> None:
        """Wait for every spawned unit to post its message."""
        while self._units:
            await asyncio.gather(*list(self._units), return_exceptions=True)

    async def run(self, handler: Callable[[Message], None]) -> None:
        with self._lock:
            self._loop = asyncio.get_running_loop()
            early, self._early = self._early, []
        for message in early:
            self._queue.put_nowait(message)
        self._running = True
        while self._running:
            message = await self.next()
            handler(message)

    def stop(self) -> None:
        self._running = False
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        if self._loop is not None:
            # Wake a consumer blocked in next()
            self._loop.call_soon_threadsafe(self._queue.put_nowait, Message())
