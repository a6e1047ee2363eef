"""Tests for the shared event emitter."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from edwiges.events import EventEmitter


class TestSubscription:
    def test_on_receives_every_emit(self) -> None:
        emitter = EventEmitter()
        seen: list[tuple[Any, ...]] = []
        emitter.on("tick", lambda *args: seen.append(args))

        assert emitter.emit("tick", 1)
        assert emitter.emit("tick", 2, "x")

        assert seen == [(1,), (2, "x")]

    def test_once_delivers_a_single_time(self) -> None:
        emitter = EventEmitter()
        seen: list[int] = []
        emitter.once("tick", seen.append)

        emitter.emit("tick", 1)
        emitter.emit("tick", 2)

        assert seen == [1]
        assert emitter.listener_count("tick") == 0

    def test_off_removes_listener(self) -> None:
        emitter = EventEmitter()
        seen: list[int] = []
        emitter.on("tick", seen.append)
        emitter.off("tick", seen.append)

        assert not emitter.emit("tick", 1)
        assert seen == []

    def test_decorator_form(self) -> None:
        emitter = EventEmitter()
        seen: list[str] = []

        @emitter.on("name")
        def record(value: str) -> None:
            seen.append(value)

        @emitter.once("name")
        def record_once(value: str) -> None:
            seen.append(value.upper())

        emitter.emit("name", "a")
        emitter.emit("name", "b")

        assert seen == ["a", "A", "b"]
        assert record.__name__ == "record"

    def test_listener_must_be_callable(self) -> None:
        with pytest.raises(TypeError):
            EventEmitter().on("tick", "not callable")

    def test_emit_without_listeners_returns_false(self) -> None:
        assert not EventEmitter().emit("nothing")


class TestListenerFailures:
    def test_raising_listener_does_not_stop_others(self, caplog: pytest.LogCaptureFixture) -> None:
        emitter = EventEmitter()
        seen: list[int] = []

        def broken(_value: int) -> None:
            raise RuntimeError("boom")

        emitter.on("tick", broken)
        emitter.on("tick", seen.append)

        with caplog.at_level(logging.ERROR, logger="edwiges.events"):
            emitter.emit("tick", 7)

        assert seen == [7]
        assert "Event listener raised" in caplog.text

    @pytest.mark.asyncio
    async def test_async_listener_runs_as_task(self) -> None:
        emitter = EventEmitter()
        done = asyncio.Event()
        seen: list[int] = []

        async def listener(value: int) -> None:
            await asyncio.sleep(0)
            seen.append(value)
            done.set()

        emitter.on("tick", listener)
        emitter.emit("tick", 3)
        await asyncio.wait_for(done.wait(), 1.0)

        assert seen == [3]

    @pytest.mark.asyncio
    async def test_async_listener_failure_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        emitter = EventEmitter()

        async def listener() -> None:
            raise RuntimeError("async boom")

        emitter.on("tick", listener)
        with caplog.at_level(logging.ERROR, logger="edwiges.events"):
            emitter.emit("tick")
            for _ in range(5):
                await asyncio.sleep(0)

        assert "Async event listener raised" in caplog.text

    def test_unobserved_error_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="edwiges.events"):
            delivered = EventEmitter().emit("error", ValueError("lost"))

        assert not delivered
        assert "Unobserved error event" in caplog.text


class TestBufferedEvents:
    def test_buffered_event_replayed_to_first_listener(self) -> None:
        emitter = EventEmitter(buffered=("spawned",))
        assert not emitter.emit("spawned", 0)
        assert not emitter.emit("spawned", 1)

        seen: list[int] = []
        emitter.on("spawned", seen.append)

        assert seen == [0, 1]

    def test_buffer_drained_once(self) -> None:
        emitter = EventEmitter(buffered=("spawned",))
        emitter.emit("spawned", 0)

        first: list[int] = []
        second: list[int] = []
        emitter.on("spawned", first.append)
        emitter.on("spawned", second.append)

        assert first == [0]
        assert second == []

    def test_unbuffered_events_are_dropped(self) -> None:
        emitter = EventEmitter(buffered=("spawned",))
        emitter.emit("other", 1)

        seen: list[int] = []
        emitter.on("other", seen.append)

        assert seen == []


class TestWaiting:
    @pytest.mark.asyncio
    async def test_wait_for_returns_args(self) -> None:
        emitter = EventEmitter()
        loop = asyncio.get_running_loop()
        loop.call_soon(emitter.emit, "ready", "user", 2)

        assert await emitter.wait_for("ready", timeout=1.0) == ("user", 2)
        assert emitter.listener_count("ready") == 0

    @pytest.mark.asyncio
    async def test_wait_for_timeout_unsubscribes(self) -> None:
        emitter = EventEmitter()

        with pytest.raises(TimeoutError):
            await emitter.wait_for("ready", timeout=0.01)

        assert emitter.listener_count("ready") == 0

    @pytest.mark.asyncio
    async def test_future_for_subscribes_immediately(self) -> None:
        emitter = EventEmitter()
        future = emitter.future_for("ready")

        emitter.emit("ready", 1)

        assert future.done()
        assert await future == (1,)
