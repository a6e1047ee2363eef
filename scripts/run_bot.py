#!/usr/bin/env python3
"""
Run an Edwiges bot, in-process or as a multi-process cluster.

Reads the bot token from EDWIGES_TOKEN and answers ``!ping`` with ``Pong!``.

Usage:
    python -m scripts.run_bot                           # 1 shard, 1 process
    python -m scripts.run_bot --shards 4 --concurrent   # 4 shards, parallel connect
    python -m scripts.run_bot --shards 4 --workers 2    # 2 worker processes x 2 shards
    python -m scripts.run_bot --gateway-url ws://127.0.0.1:8765/  # local fake gateway

Graceful shutdown via SIGINT/SIGTERM or --duration-s timeout.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from typing import Any

from prometheus_client.registry import CollectorRegistry

from edwiges.client import Client
from edwiges.cluster.manager import ClusterManager, WorkerHandle
from edwiges.config import ClientOptions
from edwiges.constants import DEFAULT_GATEWAY_URL, DEFAULT_INTENTS, Intents
from edwiges.errors import ClientConfigError, RestError
from edwiges.exporter import MetricsExporter
from edwiges.logging_config import setup_logging
from edwiges.metrics_server import start_metrics_server, stop_metrics_server
from edwiges.models import Message

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "EDWIGES_TOKEN"
PING_COMMAND = "!ping"


@dataclass
class RunConfig:
    """Command line configuration for one bot run."""

    token: str = field(repr=False)
    total_shards: int = 1
    total_workers: int = 1
    concurrent: bool = False
    gateway_url: str = DEFAULT_GATEWAY_URL
    intents: list[int] = field(default_factory=lambda: [DEFAULT_INTENTS])
    metrics_port: int = 0
    duration_s: int | None = None
    json_logs: bool = True
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.token:
            msg = f"Bot token is missing; set {TOKEN_ENV_VAR}"
            raise ValueError(msg)
        if self.total_shards < 1:
            msg = f"total_shards must be >= 1, got {self.total_shards}"
            raise ValueError(msg)
        if self.total_workers < 1:
            msg = f"total_workers must be >= 1, got {self.total_workers}"
            raise ValueError(msg)
        if not 0 <= self.metrics_port <= 65535:
            msg = f"metrics_port must be 0..65535, got {self.metrics_port}"
            raise ValueError(msg)
        if self.duration_s is not None and self.duration_s <= 0:
            msg = f"duration_s must be > 0, got {self.duration_s}"
            raise ValueError(msg)

    @property
    def clustered(self) -> bool:
        return self.total_workers > 1

    def client_options(self) -> ClientOptions:
        """Build validated client options (raises ClientConfigError)."""
        return ClientOptions.from_mapping(
            {
                "intents": self.intents,
                "sharding": {
                    "gatewayUrl": self.gateway_url,
                    "totalShards": self.total_shards,
                    "connectOneShardAtTime": not self.concurrent,
                },
                "clustering": {"totalWorkers": self.total_workers},
            }
        )


def setup_bot(client: Client) -> None:
    """
    Register the bot's listeners on a Client.

    Module level so it can be handed to worker processes by reference.
    """

    async def on_message(message: Message) -> None:
        if message.author.bot or message.content.strip() != PING_COMMAND:
            return
        try:
            await client.rest.create_message(message.channel_id, "Pong!")
        except RestError as e:
            logger.warning(
                "Failed to answer ping",
                extra={"channel_id": message.channel_id, "status": e.status},
            )

    def on_ready(user: Any) -> None:
        logger.info("Logged in", extra={"username": getattr(user, "tag", None)})

    client.on("messageCreate", on_message)
    client.on("ready", on_ready)


def parse_intents(raw: str) -> list[int]:
    """Parse ``GUILDS,GUILD_MESSAGES`` or ``513`` into a list of intent bits."""
    bits: list[int] = []
    for part in (p.strip() for p in raw.split(",")):
        if not part:
            continue
        if part.isdigit():
            bits.append(int(part))
            continue
        try:
            bits.append(int(Intents[part.upper()]))
        except KeyError:
            msg = f"Unknown intent: {part!r}"
            raise ValueError(msg) from None
    return bits


class BotRunner:
    """Owns the client or cluster for one run and its metrics server."""

    def __init__(self, config: RunConfig, options: ClientOptions) -> None:
        self._config = config
        self._options = options
        self._stop = asyncio.Event()
        self._client: Client | None = None
        self._cluster: ClusterManager | None = None
        self._registry: CollectorRegistry | None = None
        self._exporter: MetricsExporter | None = None
        if config.metrics_port > 0:
            self._registry = CollectorRegistry()
            self._exporter = MetricsExporter(registry=self._registry)

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._stop.set()

    def refresh_metrics(self) -> None:
        if self._exporter is None:
            return
        if self._client is not None:
            self._exporter.update(self._client.shards.get_metrics())
        if self._cluster is not None:
            workers = self._cluster.workers
            self._exporter.update(
                workers=sum(1 for w in workers.values() if w.alive),
                ready_workers=sum(1 for w in workers.values() if w.ready),
            )

    def health(self) -> dict[str, Any]:
        if self._client is not None:
            return self._client.health()
        if self._cluster is not None:
            workers = self._cluster.workers
            return {
                "status": "ok" if workers and all(w.alive for w in workers.values()) else "degraded",
                "workers": len(workers),
                "ready_workers": sum(1 for w in workers.values() if w.ready),
            }
        return {"status": "starting"}

    async def run(self) -> int:
        metrics_runner = None
        if self._registry is not None:
            metrics_runner = await start_metrics_server(
                self._registry,
                port=self._config.metrics_port,
                health_fn=self.health,
                refresh_fn=self.refresh_metrics,
            )

        try:
            if self._config.clustered:
                return await self._run_cluster()
            return await self._run_single()
        finally:
            if metrics_runner is not None:
                await stop_metrics_server(metrics_runner)

    async def _run_single(self) -> int:
        client = Client(self._config.token, self._options)
        self._client = client
        setup_bot(client)
        client.on("error", lambda exc: logger.error("Client error", extra={"error": repr(exc)}))

        try:
            if not await client.init():
                return 1
            await self._wait()
            return 0
        finally:
            await client.close()

    async def _run_cluster(self) -> int:
        cluster = ClusterManager(self._config.token, self._options, worker_setup=setup_bot)
        self._cluster = cluster

        def on_spawned(handle: WorkerHandle) -> None:
            logger.info(
                "Worker spawned",
                extra={"worker_id": handle.worker_id, "shards": str(handle.shard_range)},
            )
            handle.on(
                "ready",
                lambda info: logger.info("Worker client ready", extra={"worker_id": handle.worker_id}),
            )

        def on_exited(handle: WorkerHandle, reason: str) -> None:
            logger.warning("Worker exited", extra={"worker_id": handle.worker_id, "reason": reason})

        cluster.on("workerSpawned", on_spawned)
        cluster.on("workerExited", on_exited)

        try:
            await cluster.init()
            await self._wait()
            return 0
        finally:
            await cluster.stop()

    async def _wait(self) -> None:
        timeout = self._config.duration_s
        try:
            await asyncio.wait_for(self._stop.wait(), timeout)
        except TimeoutError:
            logger.info("Run duration elapsed", extra={"duration_s": timeout})


def setup_signal_handlers(runner: BotRunner) -> None:
    """Route SIGINT/SIGTERM to a graceful shutdown."""
    loop = asyncio.get_running_loop()

    def signal_handler(sig: int) -> None:
        logger.info("Received signal %s, initiating shutdown", signal.Signals(sig).name)
        runner.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)


async def run_bot(config: RunConfig) -> int:
    """
    Run the bot until a signal or the configured duration.

    Returns:
        Exit code (0 = success).
    """
    try:
        options = config.client_options()
    except ClientConfigError as e:
        logger.error("Invalid options: %s", e)
        return 2

    runner = BotRunner(config, options)
    setup_signal_handlers(runner)
    return await runner.run()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run an Edwiges gateway bot.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--shards",
        type=int,
        default=1,
        help="Total shard count (default: 1)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Worker processes; >1 runs a cluster (default: 1)",
    )
    parser.add_argument(
        "--concurrent",
        action="store_true",
        help="Connect all shards at once instead of one at a time",
    )
    parser.add_argument(
        "--gateway-url",
        type=str,
        default=DEFAULT_GATEWAY_URL,
        help=f"Gateway WebSocket URL (default: {DEFAULT_GATEWAY_URL})",
    )
    parser.add_argument(
        "--intents",
        type=str,
        default=str(DEFAULT_INTENTS),
        help="Comma-separated intent names or bits (default: GUILDS,GUILD_MESSAGES)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=0,
        help="Prometheus /metrics port (0 to disable, default: 0)",
    )
    parser.add_argument(
        "--duration-s",
        type=int,
        default=None,
        help="Run for N seconds then stop gracefully (default: run until SIGINT/SIGTERM)",
    )
    parser.add_argument(
        "--plain-logs",
        action="store_true",
        help="Human-readable logs instead of JSON",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=not args.plain_logs,
    )

    try:
        config = RunConfig(
            token=os.environ.get(TOKEN_ENV_VAR, ""),
            total_shards=args.shards,
            total_workers=args.workers,
            concurrent=args.concurrent,
            gateway_url=args.gateway_url,
            intents=parse_intents(args.intents),
            metrics_port=args.metrics_port,
            duration_s=args.duration_s,
            json_logs=not args.plain_logs,
            verbose=args.verbose,
        )
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    logger.info(
        "Starting bot",
        extra={
            "total_shards": config.total_shards,
            "total_workers": config.total_workers,
            "concurrent": config.concurrent,
        },
    )

    return asyncio.run(run_bot(config))


if __name__ == "__main__":
    sys.exit(main())
