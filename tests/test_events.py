"""Tests for the single-consumer event loop."""

from __future__ import annotations

import asyncio
import threading

import pytest

from taskmux.events import EventLoop
from taskmux.messages import FocusChanged, KeyPressed, Message, SpinnerTick, UnitFailed


class TestEventLoop:
    @pytest.mark.asyncio
    async def test_post_from_loop_thread(self) -> None:
        events = EventLoop()
        events.post(KeyPressed("q"))
        assert await events.next() == KeyPressed("q")

    @pytest.mark.asyncio
    async def test_post_from_worker_thread(self) -> None:
        events = EventLoop()
        worker = threading.Thread(target=events.post, args=(KeyPressed("s"),))
        worker.start()
        worker.join()
        assert await asyncio.wait_for(events.next(), timeout=1) == KeyPressed("s")

    @pytest.mark.asyncio
    async def test_spawn_posts_unit_result(self) -> None:
        events = EventLoop()
        seen_threads: list[int] = []

        def unit(view_id: int) -> FocusChanged:
            seen_threads.append(threading.get_ident())
            return FocusChanged(view_id, False)

        events.spawn("focus", unit, 3)
        await events.drain()
        assert await events.next() == FocusChanged(3, False)
        assert seen_threads and seen_threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_raising_unit_reports_failure(self) -> None:
        events = EventLoop()

        def unit() -> Message:
            raise RuntimeError("tmux went away")

        events.spawn("drift", unit)
        await events.drain()
        assert await events.next() == UnitFailed("drift", "tmux went away")

    @pytest.mark.asyncio
    async def test_non_message_result_reports_failure(self) -> None:
        events = EventLoop()
        events.spawn("focus", lambda: None)
        await events.drain()
        message = await events.next()
        assert isinstance(message, UnitFailed)
        assert message.unit == "focus"

    @pytest.mark.asyncio
    async def test_after_delivers_later(self) -> None:
        events = EventLoop()
        events.after(0.01, SpinnerTick(1))
        assert await asyncio.wait_for(events.next(), timeout=1) == SpinnerTick(1)

    @pytest.mark.asyncio
    async def test_stop_ends_run_and_cancels_timers(self) -> None:
        events = EventLoop()
        handled: list[Message] = []

        def handler(message: Message) -> None:
            handled.append(message)
            if isinstance(message, KeyPressed):
                events.after(10, SpinnerTick(1))
                events.stop()

        events.post(KeyPressed("q"))
        await asyncio.wait_for(events.run(handler), timeout=1)
        assert handled == [KeyPressed("q")]
        assert events._timers == []

    def test_post_from_worker_thread_before_run(self) -> None:
        events = EventLoop()
        worker = threading.Thread(target=events.post, args=(KeyPressed("s"),))
        worker.start()
        worker.join()
        seen: list[Message] = []

        def handler(message: Message) -> None:
            seen.append(message)
            events.stop()

        asyncio.run(asyncio.wait_for(events.run(handler), timeout=1))
        assert seen == [KeyPressed("s")]
