"""
Cluster manager - spreads the shard range across worker processes.

Workers are separate processes started with the ``spawn`` method. All
coordination is message passing over ``multiprocessing`` queues: parameters
go in at spawn time, ready/event/exit notifications come back on a shared
queue, and each worker has its own command queue for shutdown.

``workerSpawned`` is replayed to every new subscriber for each worker that
already reported ready, and ``workerExited`` is buffered until someone
listens, so it does not matter whether the owner subscribes before or after
``init()``.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import multiprocessing
import queue
from collections.abc import Mapping
from multiprocessing.process import BaseProcess
from typing import TYPE_CHECKING, Any

from edwiges.cluster.partition import ShardRange, partition_shards
from edwiges.cluster.types import (
    NotificationKind,
    WorkerCommand,
    WorkerNotification,
    WorkerParams,
)
from edwiges.cluster.worker import WorkerSetup, run_worker
from edwiges.config import ClientOptions
from edwiges.errors import ClientConfigError, ClusterError
from edwiges.events import EventEmitter, Listener

if TYPE_CHECKING:
    from multiprocessing.queues import Queue

logger = logging.getLogger(__name__)

NOTIFICATION_POLL_S = 0.2


class WorkerHandle(EventEmitter):
    """
    Manager-side view of one worker process.

    Re-emits the worker Client's forwarded events (``ready``, ``shardReady``,
    ``shardDisconnected``, ``error``) with a dict payload, and ``exit(reason)``
    when the worker goes away.
    """

    def __init__(
        self,
        worker_id: int,
        shard_range: ShardRange,
        process: BaseProcess,
        commands: Queue[WorkerCommand],
    ) -> None:
        super().__init__()
        self.worker_id = worker_id
        self.shard_range = shard_range
        self.process = process
        self._commands = commands
        self.ready = False
        self.exit_reason: str | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.exit_reason is None and self.process.is_alive()

    @property
    def exit_code(self) -> int | None:
        return self.process.exitcode

    def stop(self) -> None:
        """Ask the worker to shut down gracefully."""
        with contextlib.suppress(ValueError, OSError):
            self._commands.put(WorkerCommand.STOP)

    def terminate(self) -> None:
        """Kill the worker process."""
        if self.process.is_alive():
            self.process.terminate()

    def close(self) -> None:
        """Release the command queue."""
        with contextlib.suppress(ValueError, OSError):
            self._commands.close()

    def __repr__(self) -> str:
        return (
            f"WorkerHandle(worker_id={self.worker_id}, shards={self.shard_range}, "
            f"pid={self.pid}, ready={self.ready}, alive={self.alive})"
        )


class ClusterManager(EventEmitter):
    """
    Spawns one worker per shard sub-range and reports their lifecycle.

    Events:
        workerSpawned(handle): a worker built its Client and is connecting.
            Replayed to late subscribers for every worker already spawned.
        workerExited(handle, reason): a worker process went away.
    """

    def __init__(
        self,
        token: str,
        options: ClientOptions | Mapping[str, Any] | None = None,
        *,
        worker_setup: WorkerSetup | None = None,
        start_method: str = "spawn",
    ) -> None:
        """
        Initialize the manager.

        Args:
            token: Bot token handed to every worker.
            options: Client options; ``clustering.total_workers`` and
                ``sharding.total_shards`` drive the partition.
            worker_setup: Picklable callable run inside each worker with its
                Client before ``Client.init()``; register listeners here.
            start_method: multiprocessing start method.

        Raises:
            ClientConfigError: On a missing token or invalid options.
        """
        super().__init__(buffered=("workerExited",))
        if not token or not isinstance(token, str):
            raise ClientConfigError("ClusterManager(token): token is missing or is not a string.")

        self._token = token
        self.options = ClientOptions.coerce(options)
        self.ranges: list[ShardRange] = partition_shards(
            self.options.sharding.total_shards,
            self.options.clustering.total_workers,
        )
        self._worker_setup = worker_setup
        self._start_method = start_method

        self._workers: dict[int, WorkerHandle] = {}
        self._unsettled_workers: set[int] = set()
        self._spawned: list[WorkerHandle] = []
        self._all_settled: asyncio.Event | None = None
        self._notifications: Queue[WorkerNotification] | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._running = False
        self._stopping = False

    @property
    def workers(self) -> dict[int, WorkerHandle]:
        """Live worker handles keyed by worker id."""
        return dict(self._workers)

    @property
    def running(self) -> bool:
        return self._running

    def _add(self, event: str, listener: Listener, *, once: bool) -> None:
        if event != "workerSpawned" or not self._spawned:
            super()._add(event, listener, once=once)
            return
        if not callable(listener):
            raise TypeError(f"listener for {event!r} is not callable")

        # Every subscriber sees the workers that already reported ready
        if once:
            self._invoke(event, listener, (self._spawned[0],))
            return
        super()._add(event, listener, once=False)
        for handle in list(self._spawned):
            self._invoke(event, listener, (handle,))

    def worker_params(self, worker_id: int, shard_range: ShardRange) -> WorkerParams:
        """Spawn parameters for ``worker_id`` owning ``shard_range``."""
        sharding = dataclasses.replace(
            self.options.sharding,
            first_shard_id=shard_range.first,
            last_shard_id=shard_range.last,
        )
        return WorkerParams(
            worker_id=worker_id,
            token=self._token,
            shard_range=shard_range,
            options=dataclasses.replace(self.options, sharding=sharding),
        )

    async def init(self) -> ClusterManager:
        """
        Spawn every worker and wait until each has reported ready or exited.

        Returns:
            The manager itself, so listeners can be attached fluently.

        Raises:
            ClusterError: If a worker process cannot be started. Workers
                already running are stopped first.
        """
        if self._running:
            logger.warning("Cluster manager already started")
            return self

        self._running = True
        self._stopping = False
        self._spawned.clear()
        ctx = multiprocessing.get_context(self._start_method)
        notifications: Queue[WorkerNotification] = ctx.Queue()
        self._notifications = notifications
        self._all_settled = asyncio.Event()

        logger.info(
            "Starting cluster",
            extra={
                "total_workers": len(self.ranges),
                "total_shards": self.options.sharding.total_shards,
            },
        )

        for worker_id, shard_range in enumerate(self.ranges):
            commands: Queue[WorkerCommand] = ctx.Queue()
            process = ctx.Process(
                target=run_worker,
                args=(self.worker_params(worker_id, shard_range), notifications, commands, self._worker_setup),
                name=f"edwiges-worker-{worker_id}",
                daemon=True,
            )
            try:
                process.start()
            except OSError as e:
                logger.error(
                    "Failed to start worker process",
                    extra={"worker_id": worker_id, "error": repr(e)},
                )
                await self.stop()
                raise ClusterError(f"Could not start worker {worker_id}: {e}") from e
            self._workers[worker_id] = WorkerHandle(worker_id, shard_range, process, commands)
            self._unsettled_workers.add(worker_id)
            logger.info(
                "Worker process started",
                extra={
                    "worker_id": worker_id,
                    "worker_pid": process.pid,
                    "first_shard_id": shard_range.first,
                    "last_shard_id": shard_range.last,
                },
            )

        self._monitor_task = asyncio.create_task(self._monitor_loop(), name="cluster-monitor")

        timeout = self.options.clustering.ready_timeout_ms / 1000
        try:
            await asyncio.wait_for(self._all_settled.wait(), timeout)
        except TimeoutError:
            logger.warning(
                "Timed out waiting for workers",
                extra={"pending_workers": sorted(self._unsettled_workers), "timeout_s": timeout},
            )

        return self

    def _poll_notification(self, timeout: float | None = NOTIFICATION_POLL_S) -> WorkerNotification | None:
        if self._notifications is None:
            return None
        try:
            if timeout is None:
                return self._notifications.get_nowait()
            return self._notifications.get(timeout=timeout)
        except (queue.Empty, OSError, ValueError, EOFError):
            return None

    async def _monitor_loop(self) -> None:
        """Relay worker notifications and detect dead workers."""
        loop = asyncio.get_running_loop()
        while self._running:
            note = await loop.run_in_executor(None, self._poll_notification)
            if note is not None:
                self._handle_notification(note)
            else:
                self._reap_dead_workers()

    def _handle_notification(self, note: WorkerNotification) -> None:
        handle = self._workers.get(note.worker_id)
        if handle is None:
            logger.debug(
                "Notification from unknown worker",
                extra={"worker_id": note.worker_id, "kind": note.kind.value},
            )
            return

        if note.kind == NotificationKind.READY:
            handle.ready = True
            self._settle(handle.worker_id)
            logger.info(
                "Worker ready",
                extra={"worker_id": handle.worker_id, "worker_pid": note.pid},
            )
            self._spawned.append(handle)
            self.emit("workerSpawned", handle)

        elif note.kind == NotificationKind.EVENT and note.event:
            handle.emit(note.event, note.payload)

        elif note.kind == NotificationKind.EXITED:
            self._remove_worker(handle, note.reason or "exited")

    def _reap_dead_workers(self) -> None:
        dead = [handle for handle in self._workers.values() if not handle.process.is_alive()]
        if not dead:
            return
        # A worker flushes its queue before exiting; deliver its own EXITED first
        while (note := self._poll_notification(timeout=None)) is not None:
            self._handle_notification(note)
        for handle in dead:
            self._remove_worker(handle, f"process exited with code {handle.process.exitcode}")

    def _remove_worker(self, handle: WorkerHandle, reason: str) -> None:
        if self._workers.pop(handle.worker_id, None) is None:
            return
        handle.exit_reason = reason
        self._settle(handle.worker_id)

        if self._stopping:
            logger.info("Worker exited", extra={"worker_id": handle.worker_id, "reason": reason})
        else:
            logger.warning(
                "Worker exited unexpectedly",
                extra={"worker_id": handle.worker_id, "reason": reason},
            )
        handle.emit("exit", reason)
        self.emit("workerExited", handle, reason)

    def _settle(self, worker_id: int) -> None:
        self._unsettled_workers.discard(worker_id)
        if not self._unsettled_workers and self._all_settled is not None:
            self._all_settled.set()

    async def stop(self, timeout: float = 10.0) -> None:
        """
        Stop every worker: graceful stop command, then terminate stragglers.

        Args:
            timeout: Seconds to wait for a graceful exit per worker.
        """
        if not self._running:
            return

        self._stopping = True
        handles = list(self._workers.values())
        for handle in handles:
            handle.stop()

        loop = asyncio.get_running_loop()
        await asyncio.gather(
            *(loop.run_in_executor(None, handle.process.join, timeout) for handle in handles)
        )
        for handle in handles:
            if handle.process.is_alive():
                logger.warning("Terminating worker", extra={"worker_id": handle.worker_id})
                handle.terminate()
                await loop.run_in_executor(None, handle.process.join, 1.0)

        self._running = False
        if self._monitor_task is not None:
            await self._monitor_task
            self._monitor_task = None

        while (note := self._poll_notification(timeout=None)) is not None:
            self._handle_notification(note)
        self._reap_dead_workers()

        for handle in handles:
            handle.close()
        if self._notifications is not None:
            self._notifications.close()
            self._notifications = None
        logger.info("Cluster stopped")
