"""
Multi-process clustering.

- partition_shards: split the shard id space across workers
- ClusterManager: spawn workers and report their lifecycle
- run_worker: worker process entry point
"""

from edwiges.cluster.manager import ClusterManager, WorkerHandle
from edwiges.cluster.partition import ShardRange, partition_shards
from edwiges.cluster.types import (
    NotificationKind,
    WorkerCommand,
    WorkerNotification,
    WorkerParams,
)
from edwiges.cluster.worker import WorkerSetup, run_worker

__all__ = [
    "ClusterManager",
    "NotificationKind",
    "ShardRange",
    "WorkerCommand",
    "WorkerHandle",
    "WorkerNotification",
    "WorkerParams",
    "WorkerSetup",
    "partition_shards",
    "run_worker",
]
