"""
Gateway shard - one WebSocket connection running the gateway protocol.

Lifecycle:
- connect() opens the socket and waits for Hello
- Hello starts the heartbeat task and triggers Identify
- READY (dispatch) marks the shard ready
- Dispatch frames are routed to handlers by event type

There is no resume or reconnect: a socket closed by the gateway leaves the
shard CLOSED until the owner calls connect() again.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import sys
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp

from edwiges.constants import CLIENT_NAME
from edwiges.errors import ClientConfigError, GatewayConnectError, GatewayError, MalformedPayloadError
from edwiges.events import EventEmitter
from edwiges.gateway.handlers import DispatchRegistry
from edwiges.gateway.types import (
    ConnectionState,
    GatewayOpcode,
    GatewayPayload,
    ShardMetrics,
)

if TYPE_CHECKING:
    from edwiges.client import Client
    from edwiges.config import ClientOptions

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class GatewayShard(EventEmitter):
    """
    A single gateway connection for one shard id.

    Signals:
        connected(): socket opened, awaiting Hello.
        ready(): READY dispatch processed.
        disconnected(close_code): socket closed (locally or by the gateway).
        dispatch(event_type, data): every dispatch frame.
        pingUpdate(latency_ms): heartbeat ack received.
        unhandledEvent(event_type, data): dispatch with no registered handler.
        handlerError(event_type, exc): a dispatch handler raised.
        error(exc): transport error (connect failure, malformed frame).
        stateChange(old_state, new_state)
    """

    def __init__(
        self,
        shard_id: int,
        token: str,
        options: ClientOptions,
        *,
        client: Client | None = None,
        registry: DispatchRegistry | None = None,
        time_fn: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize the shard.

        Args:
            shard_id: Shard id in [0, total_shards).
            token: Bot token sent in Identify.
            options: Client options (gateway URL, intents, API version).
            client: Facade passed to dispatch handlers.
            registry: Dispatch handlers by event type (empty if omitted).
            time_fn: Millisecond clock, injectable for deterministic tests.
        """
        super().__init__()
        if not token or not isinstance(token, str):
            raise ClientConfigError("GatewayShard(token): token is missing or is not a string.")
        total = options.sharding.total_shards
        if not 0 <= shard_id < total:
            raise ClientConfigError(f"shard_id {shard_id} outside [0, {total})")

        self._shard_id = shard_id
        self._token = token
        self._options = options
        self._client = client
        self._registry = registry if registry is not None else DispatchRegistry()
        self._time_fn = time_fn or _now_ms

        self._state = ConnectionState.DISCONNECTED
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._closing = False

        self._sequence: int | None = None
        self._session_id: str | None = None
        self._ready = False
        self._heartbeat_interval_ms: float | None = None
        self._last_heartbeat_sent: int = 0
        self._last_heartbeat_ack: int = 0
        self._latency_ms: int | None = None

        self._metrics = ShardMetrics(shard_id=shard_id)

    @property
    def shard_id(self) -> int:
        return self._shard_id

    @property
    def total_shards(self) -> int:
        return self._options.sharding.total_shards

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def sequence(self) -> int | None:
        """Last seen dispatch sequence number."""
        return self._sequence

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def heartbeat_interval_ms(self) -> float | None:
        return self._heartbeat_interval_ms

    @property
    def last_heartbeat_sent(self) -> int:
        return self._last_heartbeat_sent

    @property
    def last_heartbeat_ack(self) -> int:
        return self._last_heartbeat_ack

    @property
    def latency_ms(self) -> int | None:
        """Round trip of the last acknowledged heartbeat."""
        return self._latency_ms

    @property
    def gateway_url(self) -> str:
        return self._build_gateway_url()

    def get_metrics(self) -> ShardMetrics:
        """Get current shard metrics."""
        self._metrics.state = self._state
        self._metrics.sequence = self._sequence
        self._metrics.latency_ms = self._latency_ms
        return self._metrics

    def _set_state(self, state: ConnectionState) -> None:
        """Update connection state and notify listeners."""
        if self._state != state:
            old_state = self._state
            self._state = state
            self._metrics.state = state
            logger.debug(
                "Shard state changed",
                extra={
                    "shard_id": self._shard_id,
                    "old_state": old_state.value,
                    "new_state": state.value,
                },
            )
            self.emit("stateChange", old_state, state)

    def _build_gateway_url(self) -> str:
        """Gateway URL with API version and encoding query parameters."""
        parts = urlsplit(self._options.sharding.gateway_url)
        query = dict(parse_qsl(parts.query))
        query.setdefault("v", str(self._options.rest.api_version))
        query.setdefault("encoding", "json")
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def connect(self) -> bool:
        """
        Open the gateway socket.

        Failures are logged and reported on the ``error`` signal; they are not
        raised and no retry is attempted.

        Returns:
            True if the socket opened.
        """
        if self._state not in (ConnectionState.DISCONNECTED, ConnectionState.CLOSED):
            logger.warning(
                "Connect ignored, shard already active",
                extra={"shard_id": self._shard_id, "state": self._state.value},
            )
            return False

        self._reset_session_state()
        self._set_state(ConnectionState.CONNECTING)
        url = self._build_gateway_url()

        try:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()

            logger.info("Connecting to gateway", extra={"shard_id": self._shard_id})
            self._ws = await self._session.ws_connect(url, autoping=True, max_msg_size=0)

        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            logger.error(
                "Failed to connect",
                extra={"shard_id": self._shard_id, "error": str(e)},
            )
            await self._close_session()
            self._set_state(ConnectionState.DISCONNECTED)
            self.emit(
                "error",
                GatewayConnectError(f"Shard {self._shard_id} could not connect: {e}", self._shard_id),
            )
            return False

        self._set_state(ConnectionState.AWAITING_HELLO)
        self._receive_task = asyncio.create_task(
            self._receive_loop(self._ws), name=f"gateway-shard-{self._shard_id}-receive"
        )
        logger.info("Gateway socket open", extra={"shard_id": self._shard_id})
        self.emit("connected")
        return True

    async def close(self, code: int = 1000) -> None:
        """
        Tear the connection down.

        The heartbeat task is cancelled before the socket closes. Safe to call
        more than once.
        """
        was_open = self._ws is not None
        self._closing = True
        await self._teardown(code)
        if was_open:
            logger.info("Gateway connection closed", extra={"shard_id": self._shard_id})
            self.emit("disconnected", code)

    async def _teardown(self, code: int = 1000) -> None:
        await self._stop_heartbeating()

        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=code)
        self._ws = None

        task = self._receive_task
        self._receive_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._close_session()
        self._ready = False
        self._set_state(ConnectionState.CLOSED)

    async def _close_session(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _reset_session_state(self) -> None:
        self._closing = False
        self._sequence = None
        self._session_id = None
        self._ready = False
        self._heartbeat_interval_ms = None
        self._last_heartbeat_sent = 0
        self._last_heartbeat_ack = 0
        self._latency_ms = None

    async def send_payload(self, op: int, data: Any) -> bool:
        """
        Serialize ``{op, d}`` and write it to the socket.

        Returns:
            False (without raising) if the socket is not open or the write failed.
        """
        ws = self._ws
        if ws is None or ws.closed:
            logger.debug(
                "Dropping outbound payload, socket not open",
                extra={"shard_id": self._shard_id, "op": int(op)},
            )
            return False

        try:
            await ws.send_str(GatewayPayload.encode(op, data))
        except (ConnectionResetError, aiohttp.ClientError) as e:
            logger.warning(
                "Failed to send payload",
                extra={"shard_id": self._shard_id, "op": int(op), "error": str(e)},
            )
            self.emit("error", GatewayError(f"Send failed: {e}", self._shard_id))
            return False
        return True

    async def identify(self) -> bool:
        """Send Identify for this shard."""
        sent = await self.send_payload(
            GatewayOpcode.IDENTIFY,
            {
                "token": self._token,
                "v": self._options.rest.api_version,
                "compress": False,
                "intents": self._options.intents,
                "shard": [self._shard_id, self.total_shards],
                "properties": {
                    "os": sys.platform,
                    "browser": CLIENT_NAME,
                    "device": CLIENT_NAME,
                },
            },
        )
        if sent:
            logger.info(
                "Identify sent",
                extra={"shard_id": self._shard_id, "intents": self._options.intents},
            )
        return sent

    async def send_heartbeat(self) -> bool:
        """Send a Heartbeat carrying the last seen sequence number."""
        previous = self._last_heartbeat_sent
        # The ack may be read before send_payload() returns
        self._last_heartbeat_sent = self._time_fn()
        sent = await self.send_payload(GatewayOpcode.HEARTBEAT, self._sequence)
        if sent:
            self._metrics.heartbeats_sent += 1
        else:
            self._last_heartbeat_sent = previous
        return sent

    def mark_ready(self, session_id: str | None = None) -> None:
        """Record that the gateway accepted the session."""
        self._session_id = session_id
        self._ready = True
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Shard ready", extra={"shard_id": self._shard_id})
        self.emit("ready")

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Read frames until the socket closes."""
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self._handle_frame(msg.data)

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(
                        "WebSocket error",
                        extra={"shard_id": self._shard_id, "error": str(ws.exception())},
                    )
                    break

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Error in receive loop",
                extra={"shard_id": self._shard_id, "error": str(e)},
            )

        if not self._closing and self._ws is ws:
            close_code = ws.close_code
            logger.warning(
                "Gateway closed the connection",
                extra={"shard_id": self._shard_id, "close_code": close_code},
            )
            await self._teardown()
            self.emit("disconnected", close_code)

    async def _handle_frame(self, raw: str | bytes) -> None:
        """Decode one frame and run the matching protocol step."""
        try:
            payload = GatewayPayload.from_raw(raw)
        except MalformedPayloadError as e:
            e.shard_id = self._shard_id
            self._metrics.malformed_payloads += 1
            logger.warning(
                "Dropping malformed gateway frame",
                extra={"shard_id": self._shard_id, "error": str(e)},
            )
            self.emit("error", e)
            return

        if payload.s is not None and (self._sequence is None or payload.s > self._sequence):
            self._sequence = payload.s

        if payload.op == GatewayOpcode.HELLO:
            await self._handle_hello(payload)
        elif payload.op == GatewayOpcode.HEARTBEAT_ACK:
            self._handle_heartbeat_ack()
        elif payload.op == GatewayOpcode.DISPATCH:
            await self._handle_dispatch(payload)
        elif payload.op in (GatewayOpcode.RECONNECT, GatewayOpcode.INVALID_SESSION):
            # Resume and re-identify are not implemented.
            logger.warning(
                "Gateway requested session recovery, which is not supported",
                extra={"shard_id": self._shard_id, "op": payload.op},
            )
        else:
            logger.debug(
                "Ignoring gateway opcode",
                extra={"shard_id": self._shard_id, "op": payload.op},
            )

    async def _handle_hello(self, payload: GatewayPayload) -> None:
        data = payload.d if isinstance(payload.d, dict) else {}
        interval = data.get("heartbeat_interval")

        if isinstance(interval, (int, float)) and not isinstance(interval, bool) and interval > 0:
            self._start_heartbeating(interval)
        else:
            logger.warning(
                "Hello without a usable heartbeat_interval",
                extra={"shard_id": self._shard_id, "heartbeat_interval": interval},
            )

        await self.identify()
        self._set_state(ConnectionState.IDENTIFYING)

    def _handle_heartbeat_ack(self) -> None:
        self._last_heartbeat_ack = self._time_fn()
        self._metrics.heartbeat_acks += 1

        if not self._last_heartbeat_sent:
            logger.debug("Heartbeat ack before any heartbeat", extra={"shard_id": self._shard_id})
            return

        self._latency_ms = self._last_heartbeat_ack - self._last_heartbeat_sent
        self.emit("pingUpdate", self._latency_ms)

    async def _handle_dispatch(self, payload: GatewayPayload) -> None:
        """
        Route a dispatch to its handler.

        Handler failures never reach the transport: they are logged and
        surfaced on ``handlerError``.
        """
        self._metrics.dispatches_received += 1
        self.emit("dispatch", payload.t, payload.d)

        handler = self._registry.get(payload.t)
        if handler is None:
            self._metrics.unhandled_events += 1
            self.emit("unhandledEvent", payload.t, payload.d)
            return

        try:
            result = handler(self._client, self, payload.d)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._metrics.handler_errors += 1
            logger.warning(
                "Dispatch handler failed",
                extra={"shard_id": self._shard_id, "event_type": payload.t, "error": repr(e)},
            )
            self.emit("handlerError", payload.t, e)

    def _start_heartbeating(self, interval_ms: float) -> None:
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            logger.debug("Heartbeat already running", extra={"shard_id": self._shard_id})
            return

        self._heartbeat_interval_ms = interval_ms
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(interval_ms), name=f"gateway-shard-{self._shard_id}-heartbeat"
        )
        logger.debug(
            "Heartbeat started",
            extra={"shard_id": self._shard_id, "interval_ms": interval_ms},
        )

    async def _stop_heartbeating(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _heartbeat_loop(self, interval_ms: float) -> None:
        """Send a heartbeat every ``interval_ms`` on a fixed schedule."""
        loop = asyncio.get_running_loop()
        interval = interval_ms / 1000
        next_at = loop.time() + interval

        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            next_at += interval
            await self.send_heartbeat()
