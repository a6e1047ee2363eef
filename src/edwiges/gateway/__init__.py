"""
Gateway WebSocket client.

- GatewayShard: one connection running the gateway protocol
- ShardPool: the shards owned by one process
- DispatchRegistry: dispatch handlers keyed by event type
"""

from edwiges.gateway.handlers import DispatchHandler, DispatchRegistry, default_registry
from edwiges.gateway.pool import ShardPool
from edwiges.gateway.shard import GatewayShard
from edwiges.gateway.types import (
    ConnectionState,
    GatewayOpcode,
    GatewayPayload,
    PoolMetrics,
    ShardMetrics,
)

__all__ = [
    "ConnectionState",
    "DispatchHandler",
    "DispatchRegistry",
    "GatewayOpcode",
    "GatewayPayload",
    "GatewayShard",
    "PoolMetrics",
    "ShardMetrics",
    "ShardPool",
    "default_registry",
]
