"""
Minimal publish/subscribe emitter shared by shards, pools, clients and the
cluster manager.

Listeners may be plain callables or coroutine functions. Coroutine listeners
are scheduled as tasks on the running loop. A listener that raises is logged
and never interrupts the emitter or the other listeners.

Events named in ``buffered`` are retained while nobody listens and replayed to
the first listener that subscribes, so single-shot notifications such as
``workerSpawned`` survive a late subscription.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Named-event emitter."""

    def __init__(self, *, buffered: Iterable[str] = ()) -> None:
        self._listeners: dict[str, list[tuple[Listener, bool]]] = defaultdict(list)
        self._buffered_events = frozenset(buffered)
        self._backlog: dict[str, list[tuple[Any, ...]]] = defaultdict(list)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, listener: Listener | None = None) -> Any:
        """
        Subscribe ``listener`` to ``event``.

        Usable as a decorator::

            @client.on("messageCreate")
            async def handle(message): ...
        """
        if listener is None:

            def decorator(fn: Listener) -> Listener:
                self._add(event, fn, once=False)
                return fn

            return decorator

        self._add(event, listener, once=False)
        return listener

    def once(self, event: str, listener: Listener | None = None) -> Any:
        """Subscribe ``listener`` for a single delivery of ``event``."""
        if listener is None:

            def decorator(fn: Listener) -> Listener:
                self._add(event, fn, once=True)
                return fn

            return decorator

        self._add(event, listener, once=True)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        """Remove every subscription of ``listener`` to ``event``."""
        self._listeners[event] = [
            (fn, once) for fn, once in self._listeners[event] if fn != listener
        ]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def _add(self, event: str, listener: Listener, *, once: bool) -> None:
        if not callable(listener):
            raise TypeError(f"listener for {event!r} is not callable")
        self._listeners[event].append((listener, once))

        pending = self._backlog.pop(event, None)
        if pending:
            for args in pending:
                self.emit(event, *args)

    def emit(self, event: str, *args: Any) -> bool:
        """
        Deliver ``event`` to its listeners.

        Returns:
            True if at least one listener received the event.
        """
        listeners = self._listeners.get(event)
        if not listeners:
            if event in self._buffered_events:
                self._backlog[event].append(args)
            elif event == "error" and args:
                logger.error(
                    "Unobserved error event",
                    extra={"emitter": type(self).__name__, "error": repr(args[0])},
                )
            return False

        self._listeners[event] = [(fn, once) for fn, once in listeners if not once]
        for listener, _once in listeners:
            self._invoke(event, listener, args)
        return True

    def _invoke(self, event: str, listener: Listener, args: tuple[Any, ...]) -> None:
        try:
            result = listener(*args)
        except Exception:
            logger.exception(
                "Event listener raised",
                extra={"emitter": type(self).__name__, "event": event},
            )
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
            task.add_done_callback(lambda t: self._log_task_failure(event, t))

    def _log_task_failure(self, event: str, task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Async event listener raised",
                exc_info=exc,
                extra={"emitter": type(self).__name__, "event": event},
            )

    async def wait_for(self, event: str, timeout: float | None = None) -> tuple[Any, ...]:
        """
        Wait for the next delivery of ``event``.

        Raises:
            TimeoutError: If ``timeout`` seconds pass first.
        """
        future = self.future_for(event)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if not future.done():
                future.cancel()

    def future_for(self, event: str) -> asyncio.Future[tuple[Any, ...]]:
        """Return a future resolved with the arguments of the next ``event``.

        Subscribes immediately, so it can be taken before triggering the action
        that emits the event.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[tuple[Any, ...]] = loop.create_future()

        def resolve(*args: Any) -> None:
            if not future.done():
                future.set_result(args)

        self.once(event, resolve)
        future.add_done_callback(lambda _f: self.off(event, resolve))
        return future
