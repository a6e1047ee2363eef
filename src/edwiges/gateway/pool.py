"""
Shard pool - the gateway connections owned by one process.

Connects every shard id in the configured range, either one at a time (each
connect waits for the previous socket to open, keeping identifies spaced out
for the platform's identify rate limit) or all at once.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from edwiges.events import EventEmitter
from edwiges.gateway.handlers import DispatchRegistry
from edwiges.gateway.shard import GatewayShard
from edwiges.gateway.types import PoolMetrics, ShardMetrics

if TYPE_CHECKING:
    from edwiges.client import Client
    from edwiges.config import ClientOptions

logger = logging.getLogger(__name__)

# Shard signals re-emitted by the pool with the shard id prepended
FORWARDED_SIGNALS: tuple[str, ...] = (
    "connected",
    "disconnected",
    "ready",
    "dispatch",
    "error",
    "pingUpdate",
    "unhandledEvent",
    "handlerError",
)

ShardFactory = Callable[[int], GatewayShard]


class ShardPool(EventEmitter):
    """
    Owns one GatewayShard per shard id in ``[first_shard_id, last_shard_id]``.

    Every shard signal is re-emitted as ``(signal, shard_id, *args)``.
    """

    def __init__(
        self,
        token: str,
        options: ClientOptions,
        *,
        client: Client | None = None,
        registry: DispatchRegistry | None = None,
        time_fn: Callable[[], int] | None = None,
        shard_factory: ShardFactory | None = None,
    ) -> None:
        """
        Initialize the pool.

        Args:
            token: Bot token.
            options: Client options; the shard range and sequencing policy
                come from ``options.sharding``.
            client: Facade passed through to dispatch handlers.
            registry: Dispatch handlers shared by all shards.
            time_fn: Millisecond clock for the shards.
            shard_factory: Builds the shard for an id (tests inject fakes).
        """
        super().__init__()
        self._token = token
        self._options = options
        self._client = client
        self._registry = registry if registry is not None else DispatchRegistry()
        self._time_fn = time_fn
        self._shard_factory = shard_factory or self._create_shard

        self._shards: dict[int, GatewayShard] = {}
        self._started = False

    @property
    def shard_ids(self) -> range:
        return self._options.sharding.shard_ids

    @property
    def total_shards(self) -> int:
        return self._options.sharding.total_shards

    @property
    def connect_one_at_a_time(self) -> bool:
        return self._options.sharding.connect_one_shard_at_time

    @property
    def shards(self) -> dict[int, GatewayShard]:
        """Shards of the current run, keyed by id."""
        return dict(self._shards)

    def __len__(self) -> int:
        return len(self._shards)

    def __iter__(self) -> Iterator[GatewayShard]:
        return iter(self._shards.values())

    def get(self, shard_id: int) -> GatewayShard | None:
        return self._shards.get(shard_id)

    def shard_id_for_guild(self, guild_id: int | str) -> int:
        """Shard id that receives events for ``guild_id``."""
        return (int(guild_id) >> 22) % self.total_shards

    def shard_for_guild(self, guild_id: int | str) -> GatewayShard | None:
        """The owned shard handling ``guild_id``, or None if another process owns it."""
        return self._shards.get(self.shard_id_for_guild(guild_id))

    @property
    def all_ready(self) -> bool:
        return len(self._shards) == len(self.shard_ids) and all(s.ready for s in self._shards.values())

    @property
    def latency_ms(self) -> float | None:
        """Mean heartbeat latency over shards that have one."""
        latencies = [s.latency_ms for s in self._shards.values() if s.latency_ms is not None]
        if not latencies:
            return None
        return statistics.fmean(latencies)

    def _create_shard(self, shard_id: int) -> GatewayShard:
        return GatewayShard(
            shard_id,
            self._token,
            self._options,
            client=self._client,
            registry=self._registry,
            time_fn=self._time_fn,
        )

    def _wire(self, shard: GatewayShard) -> None:
        for signal in FORWARDED_SIGNALS:
            shard.on(signal, self._forwarder(signal, shard.shard_id))

    def _forwarder(self, signal: str, shard_id: int) -> Callable[..., None]:
        def forward(*args: Any) -> None:
            self.emit(signal, shard_id, *args)

        return forward

    async def init(self) -> None:
        """Create and connect every shard in range."""
        if self._started:
            logger.warning("Shard pool already started")
            return
        self._started = True

        shard_ids = self.shard_ids
        logger.info(
            "Starting shard pool",
            extra={
                "first_shard_id": shard_ids.start,
                "last_shard_id": shard_ids.stop - 1,
                "total_shards": self.total_shards,
                "one_at_a_time": self.connect_one_at_a_time,
            },
        )

        new_shards: list[GatewayShard] = []
        for shard_id in shard_ids:
            if shard_id in self._shards:
                continue
            shard = self._shard_factory(shard_id)
            self._wire(shard)
            self._shards[shard_id] = shard
            new_shards.append(shard)

        if self.connect_one_at_a_time:
            for shard in new_shards:
                await self._connect_and_wait(shard)
        else:
            await asyncio.gather(*(shard.connect() for shard in new_shards))

        logger.info(
            "Shard pool connect issued",
            extra={"shards": len(new_shards)},
        )

    async def _connect_and_wait(self, shard: GatewayShard) -> None:
        """Connect ``shard`` and wait for its ``connected`` signal."""
        timeout = self._options.sharding.connect_timeout_ms / 1000
        connected = shard.future_for("connected")
        try:
            if not await shard.connect():
                return
            await asyncio.wait_for(connected, timeout)
        except TimeoutError:
            logger.warning(
                "Timed out waiting for shard to connect",
                extra={"shard_id": shard.shard_id, "timeout_s": timeout},
            )
        finally:
            if not connected.done():
                connected.cancel()

    async def close(self) -> None:
        """Close every shard and forget them, so a later ``init()`` starts fresh."""
        await asyncio.gather(*(shard.close() for shard in self._shards.values()))
        self._started = False
        logger.info("Shard pool closed", extra={"shards": len(self._shards)})
        self._shards.clear()

    def get_metrics(self) -> PoolMetrics:
        """Aggregate metrics across owned shards."""
        shard_metrics: list[ShardMetrics] = [s.get_metrics() for s in self._shards.values()]
        latency = self.latency_ms

        return PoolMetrics(
            total_shards=self.total_shards,
            owned_shards=len(shard_metrics),
            open_shards=sum(1 for s in self._shards.values() if s.is_open),
            ready_shards=sum(1 for s in self._shards.values() if s.ready),
            average_latency_ms=latency,
            total_heartbeats_sent=sum(m.heartbeats_sent for m in shard_metrics),
            total_dispatches=sum(m.dispatches_received for m in shard_metrics),
            total_unhandled_events=sum(m.unhandled_events for m in shard_metrics),
            total_handler_errors=sum(m.handler_errors for m in shard_metrics),
            total_malformed_payloads=sum(m.malformed_payloads for m in shard_metrics),
            shard_metrics=shard_metrics,
        )
