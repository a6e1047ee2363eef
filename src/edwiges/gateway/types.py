"""
Types for the gateway WebSocket protocol.

Wire envelope: ``{"op": int, "d": any, "s": int | null, "t": str | null}``.
``s`` and ``t`` are only meaningful on dispatch (op 0) frames.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from edwiges.errors import MalformedPayloadError


class GatewayOpcode(IntEnum):
    """Gateway opcodes."""

    DISPATCH = 0  # Receive
    HEARTBEAT = 1  # Send/Receive
    IDENTIFY = 2  # Send
    PRESENCE_UPDATE = 3  # Send
    VOICE_STATE_UPDATE = 4  # Send
    RESUME = 6  # Send
    RECONNECT = 7  # Receive
    REQUEST_GUILD_MEMBERS = 8  # Send
    INVALID_SESSION = 9  # Receive
    HELLO = 10  # Receive
    HEARTBEAT_ACK = 11  # Receive


class ConnectionState(str, Enum):
    """Gateway connection state."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AWAITING_HELLO = "AWAITING_HELLO"
    IDENTIFYING = "IDENTIFYING"
    CONNECTED = "CONNECTED"
    CLOSED = "CLOSED"


class GatewayPayload(BaseModel):
    """
    One gateway envelope.

    Attributes:
        op: Opcode.
        d: Opcode-specific data.
        s: Event sequence number (dispatch only).
        t: Event type name (dispatch only).
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    op: int = Field(..., ge=0)
    d: Any = None
    s: int | None = Field(default=None, ge=0)
    t: str | None = None

    @classmethod
    def from_raw(cls, raw: str | bytes) -> GatewayPayload:
        """
        Parse a text or binary frame.

        Raises:
            MalformedPayloadError: If the frame is not a JSON object with an
                integer ``op``.
        """
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise MalformedPayloadError(f"Frame is not valid JSON: {e}", raw=raw) from e

        if not isinstance(data, dict):
            raise MalformedPayloadError(
                f"Frame is not a JSON object (got {type(data).__name__})", raw=raw
            )
        if isinstance(data.get("op"), bool):
            raise MalformedPayloadError("Frame opcode is not an integer", raw=raw)

        try:
            return cls.model_validate(data, strict=False)
        except ValidationError as e:
            raise MalformedPayloadError(f"Invalid gateway envelope: {e}", raw=raw) from e

    @property
    def opcode(self) -> GatewayOpcode | None:
        """Known opcode, or None for opcodes this client does not model."""
        try:
            return GatewayOpcode(self.op)
        except ValueError:
            return None

    @staticmethod
    def encode(op: int, data: Any) -> str:
        """Serialize an outbound ``{op, d}`` envelope."""
        return orjson.dumps({"op": int(op), "d": data}).decode()


@dataclass
class ShardMetrics:
    """
    Metrics for a single gateway connection.

    Attributes:
        shard_id: Shard identifier.
        state: Current connection state.
        sequence: Last seen dispatch sequence number, None before the first one.
        latency_ms: Last heartbeat round trip, None until the first ack.
        heartbeats_sent: Heartbeats written to the socket.
        heartbeat_acks: Heartbeat acks received.
        dispatches_received: Dispatch frames received.
        unhandled_events: Dispatches with no registered handler.
        handler_errors: Dispatch handlers that raised.
        malformed_payloads: Frames dropped as unparseable.
    """

    shard_id: int
    state: ConnectionState = ConnectionState.DISCONNECTED
    sequence: int | None = None
    latency_ms: int | None = None
    heartbeats_sent: int = 0
    heartbeat_acks: int = 0
    dispatches_received: int = 0
    unhandled_events: int = 0
    handler_errors: int = 0
    malformed_payloads: int = 0


@dataclass
class PoolMetrics:
    """Aggregated metrics for one shard pool."""

    total_shards: int = 0
    owned_shards: int = 0
    open_shards: int = 0
    ready_shards: int = 0
    average_latency_ms: float | None = None
    total_heartbeats_sent: int = 0
    total_dispatches: int = 0
    total_unhandled_events: int = 0
    total_handler_errors: int = 0
    total_malformed_payloads: int = 0
    shard_metrics: list[ShardMetrics] = field(default_factory=list)
