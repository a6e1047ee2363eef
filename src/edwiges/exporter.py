"""
Prometheus metrics exporter for Edwiges gateway connections.

Exports low-cardinality metrics only: everything is aggregated over the
shards a process owns. No per-shard, per-guild or per-event-type labels.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from edwiges.gateway.types import PoolMetrics


# Labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "shard_id",
        "guild_id",
        "channel_id",
        "user_id",
        "message_id",
        "session_id",
        "event_type",
        "endpoint",
        "token",
    }
)


class MetricsExporter:
    """
    Prometheus metrics exporter for a Client's shard pool.

    Metric families:
    - edwiges_gateway_* : shard pool connection state and traffic
    - edwiges_cluster_* : worker process counts (manager process only)

    Usage:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update(client.shards.get_metrics())
        # generate_latest(registry) -> bytes for /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            registry: Prometheus CollectorRegistry. If None, a fresh one is created.
        """
        self._registry = registry or CollectorRegistry()

        # === Gateway gauges (edwiges_gateway_*) ===
        self._gateway_total_shards = Gauge(
            "edwiges_gateway_total_shards",
            "Total shard count the bot is sharded into",
            registry=self._registry,
        )
        self._gateway_owned_shards = Gauge(
            "edwiges_gateway_owned_shards",
            "Shards managed by this process",
            registry=self._registry,
        )
        self._gateway_open_shards = Gauge(
            "edwiges_gateway_open_shards",
            "Owned shards with an open WebSocket",
            registry=self._registry,
        )
        self._gateway_ready_shards = Gauge(
            "edwiges_gateway_ready_shards",
            "Owned shards that received READY",
            registry=self._registry,
        )
        self._gateway_latency_ms = Gauge(
            "edwiges_gateway_latency_ms",
            "Mean heartbeat round trip across owned shards (-1 before the first ack)",
            registry=self._registry,
        )

        # === Gateway counters ===
        self._counters: dict[str, Counter] = {
            "total_heartbeats_sent": Counter(
                "edwiges_gateway_heartbeats_sent",
                "Heartbeats written to the gateway",
                registry=self._registry,
            ),
            "total_dispatches": Counter(
                "edwiges_gateway_dispatches",
                "Dispatch frames received",
                registry=self._registry,
            ),
            "total_unhandled_events": Counter(
                "edwiges_gateway_unhandled_events",
                "Dispatches with no registered handler",
                registry=self._registry,
            ),
            "total_handler_errors": Counter(
                "edwiges_gateway_handler_errors",
                "Dispatch handlers that raised",
                registry=self._registry,
            ),
            "total_malformed_payloads": Counter(
                "edwiges_gateway_malformed_payloads",
                "Frames dropped as unparseable",
                registry=self._registry,
            ),
        }

        # === Cluster gauges (edwiges_cluster_*) ===
        self._cluster_workers = Gauge(
            "edwiges_cluster_workers",
            "Worker processes currently alive",
            registry=self._registry,
        )
        self._cluster_ready_workers = Gauge(
            "edwiges_cluster_ready_workers",
            "Worker processes that reported ready",
            registry=self._registry,
        )

        # Last seen totals; counters are monotonic so only deltas are added
        self._last_totals: dict[str, int] = dict.fromkeys(self._counters, 0)

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def update(
        self,
        pool_metrics: PoolMetrics | None = None,
        *,
        workers: int | None = None,
        ready_workers: int | None = None,
    ) -> None:
        """
        Sync metrics from component state.

        Call periodically (every scrape or on a timer).

        Args:
            pool_metrics: Aggregated shard pool metrics.
            workers: Live worker process count (cluster manager only).
            ready_workers: Workers that reported ready (cluster manager only).
        """
        if pool_metrics is not None:
            self._update_gateway_metrics(pool_metrics)

        if workers is not None:
            self._cluster_workers.set(workers)
        if ready_workers is not None:
            self._cluster_ready_workers.set(ready_workers)

    def _update_gateway_metrics(self, pm: PoolMetrics) -> None:
        self._gateway_total_shards.set(pm.total_shards)
        self._gateway_owned_shards.set(pm.owned_shards)
        self._gateway_open_shards.set(pm.open_shards)
        self._gateway_ready_shards.set(pm.ready_shards)
        self._gateway_latency_ms.set(pm.average_latency_ms if pm.average_latency_ms is not None else -1)

        for attr, counter in self._counters.items():
            current = getattr(pm, attr)
            delta = current - self._last_totals[attr]
            if delta > 0:
                counter.inc(delta)
            self._last_totals[attr] = current

    def reset_counter_tracking(self) -> None:
        """
        Forget the last seen totals.

        Use after the shard pool is rebuilt. Does NOT reset the Prometheus
        counters themselves.
        """
        self._last_totals = dict.fromkeys(self._counters, 0)


# Metric names dashboards and alerts depend on
# Note: Counters are exported with _total suffix by prometheus_client
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        "edwiges_gateway_total_shards",
        "edwiges_gateway_owned_shards",
        "edwiges_gateway_open_shards",
        "edwiges_gateway_ready_shards",
        "edwiges_gateway_latency_ms",
        "edwiges_gateway_heartbeats_sent_total",
        "edwiges_gateway_dispatches_total",
        "edwiges_gateway_unhandled_events_total",
        "edwiges_gateway_handler_errors_total",
        "edwiges_gateway_malformed_payloads_total",
        "edwiges_cluster_workers",
        "edwiges_cluster_ready_workers",
    }
)
