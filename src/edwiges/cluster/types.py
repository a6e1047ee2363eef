"""
Messages exchanged between the cluster manager and its worker processes.

Everything here crosses a process boundary through ``multiprocessing.Queue``,
so it must stay picklable: plain dataclasses of builtins and options.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from edwiges.cluster.partition import ShardRange
from edwiges.config import ClientOptions


class NotificationKind(str, Enum):
    """Worker → manager notification type."""

    READY = "ready"  # Client constructed, shard pool starting
    EVENT = "event"  # Forwarded client event
    EXITED = "exited"  # Worker is shutting down


class WorkerCommand(str, Enum):
    """Manager → worker command."""

    STOP = "stop"


@dataclass(frozen=True)
class WorkerParams:
    """
    Spawn parameters for one worker.

    Attributes:
        worker_id: Index of the worker.
        token: Bot token.
        shard_range: Shard ids this worker owns.
        options: Client options with the worker's shard range applied.
    """

    worker_id: int
    token: str = field(repr=False)
    shard_range: ShardRange
    options: ClientOptions


@dataclass(frozen=True)
class WorkerNotification:
    """
    Worker → manager message.

    Attributes:
        worker_id: Sending worker.
        kind: Notification type.
        pid: Worker process id.
        event: Client event name (EVENT only).
        payload: Picklable event arguments (EVENT only).
        reason: Exit reason (EXITED only).
    """

    worker_id: int
    kind: NotificationKind
    pid: int = 0
    event: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None
