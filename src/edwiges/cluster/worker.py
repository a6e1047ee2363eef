"""
Worker process entry point.

Each worker builds its own Client for the shard range it was given, reports
``ready`` to the manager, starts the client, and then waits for a stop
command. Selected client events are forwarded to the manager as picklable
dicts.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import queue
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from edwiges.client import Client
from edwiges.cluster.types import (
    NotificationKind,
    WorkerCommand,
    WorkerNotification,
    WorkerParams,
)
from edwiges.logging_config import setup_logging

if TYPE_CHECKING:
    from multiprocessing.queues import Queue

logger = logging.getLogger(__name__)

# Hook run inside the worker with its Client before Client.init()
WorkerSetup = Callable[[Client], "Awaitable[None] | None"]

COMMAND_POLL_S = 0.5


def _encode_ready(user: Any) -> dict[str, Any]:
    return {
        "user_id": getattr(user, "id", None),
        "username": getattr(user, "username", None),
    }


def _encode_error(exc: BaseException) -> dict[str, Any]:
    return {"type": type(exc).__name__, "error": str(exc)}


FORWARDED_EVENTS: dict[str, Callable[..., dict[str, Any]]] = {
    "ready": _encode_ready,
    "shardReady": lambda shard_id: {"shard_id": shard_id},
    "shardDisconnected": lambda shard_id, close_code: {"shard_id": shard_id, "close_code": close_code},
    "error": _encode_error,
}


def run_worker(
    params: WorkerParams,
    notifications: Queue[WorkerNotification],
    commands: Queue[WorkerCommand],
    setup: WorkerSetup | None = None,
) -> None:
    """Process target: run one worker until told to stop."""
    setup_logging(worker_id=params.worker_id)
    try:
        asyncio.run(serve_worker(params, notifications, commands, setup))
    except KeyboardInterrupt:
        logger.info("Worker interrupted", extra={"worker_id": params.worker_id})


async def serve_worker(
    params: WorkerParams,
    notifications: Queue[WorkerNotification],
    commands: Queue[WorkerCommand],
    setup: WorkerSetup | None = None,
) -> None:
    """Build the worker's Client, report ready, run until a stop command."""
    pid = os.getpid()
    worker_id = params.worker_id
    client = Client(params.token, params.options)

    for event, encode in FORWARDED_EVENTS.items():
        client.on(event, _forwarder(notifications, worker_id, pid, event, encode))

    reason = "stopped"
    try:
        if setup is not None:
            result = setup(client)
            if inspect.isawaitable(result):
                await result

        notifications.put(WorkerNotification(worker_id=worker_id, kind=NotificationKind.READY, pid=pid))
        logger.info(
            "Worker ready",
            extra={
                "worker_id": worker_id,
                "first_shard_id": params.shard_range.first,
                "last_shard_id": params.shard_range.last,
            },
        )

        await client.init()
        await _wait_for_stop(commands)

    except Exception as e:
        reason = f"crashed: {e!r}"
        logger.exception("Worker crashed", extra={"worker_id": worker_id})
        raise

    except asyncio.CancelledError:
        reason = "cancelled"
        raise

    finally:
        await client.close()
        notifications.put(
            WorkerNotification(worker_id=worker_id, kind=NotificationKind.EXITED, pid=pid, reason=reason)
        )
        logger.info("Worker stopped", extra={"worker_id": worker_id, "reason": reason})


def _forwarder(
    notifications: Queue[WorkerNotification],
    worker_id: int,
    pid: int,
    event: str,
    encode: Callable[..., dict[str, Any]],
) -> Callable[..., None]:
    def forward(*args: Any) -> None:
        notifications.put(
            WorkerNotification(
                worker_id=worker_id,
                kind=NotificationKind.EVENT,
                pid=pid,
                event=event,
                payload=encode(*args),
            )
        )

    return forward


def _next_command(commands: Queue[WorkerCommand]) -> WorkerCommand | None:
    try:
        return commands.get(timeout=COMMAND_POLL_S)
    except queue.Empty:
        return None


async def _wait_for_stop(commands: Queue[WorkerCommand]) -> None:
    loop = asyncio.get_running_loop()
    while True:
        command = await loop.run_in_executor(None, _next_command, commands)
        if command == WorkerCommand.STOP:
            return
        if command is not None:
            logger.warning("Unknown worker command", extra={"command": str(command)})
