"""
Minimal HTTP server for Prometheus /metrics and /healthz endpoints.

Runs on aiohttp.web next to the gateway client in the same event loop.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import orjson
from aiohttp import web
from prometheus_client import generate_latest

if TYPE_CHECKING:
    from prometheus_client.registry import CollectorRegistry

logger = logging.getLogger(__name__)

_Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

# Returns the /healthz body, e.g. Client.health
HealthFn = Callable[[], dict[str, Any]]

# Called before each scrape, e.g. to push PoolMetrics into the exporter
RefreshFn = Callable[[], None]


def _make_metrics_handler(registry: CollectorRegistry, refresh_fn: RefreshFn | None) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        if refresh_fn is not None:
            refresh_fn()
        return web.Response(
            body=generate_latest(registry),
            content_type="text/plain; version=0.0.4",
            charset="utf-8",
        )

    return handler


def _make_healthz_handler(health_fn: HealthFn | None) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        info = health_fn() if health_fn is not None else {"status": "ok"}
        status = 200 if info.get("status") == "ok" else 503
        return web.Response(
            body=orjson.dumps(info),
            status=status,
            content_type="application/json",
        )

    return handler


def create_metrics_app(
    registry: CollectorRegistry,
    *,
    health_fn: HealthFn | None = None,
    refresh_fn: RefreshFn | None = None,
) -> web.Application:
    """
    Create aiohttp Application with /metrics and /healthz routes.

    Args:
        registry: Prometheus CollectorRegistry to serve.
        health_fn: Callback for the /healthz body. A body whose ``status`` is
            not ``"ok"`` is served with HTTP 503.
        refresh_fn: Callback run before every /metrics scrape.
    """
    app = web.Application()
    app.router.add_get("/metrics", _make_metrics_handler(registry, refresh_fn))
    app.router.add_get("/healthz", _make_healthz_handler(health_fn))
    return app


async def start_metrics_server(
    registry: CollectorRegistry,
    host: str = "0.0.0.0",
    port: int = 9090,
    *,
    health_fn: HealthFn | None = None,
    refresh_fn: RefreshFn | None = None,
) -> web.AppRunner:
    """
    Start the metrics HTTP server.

    Returns:
        AppRunner; pass it to stop_metrics_server() on shutdown.
    """
    app = create_metrics_app(registry, health_fn=health_fn, refresh_fn=refresh_fn)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Metrics server started", extra={"host": host, "port": port})
    return runner


async def stop_metrics_server(runner: web.AppRunner) -> None:
    await runner.cleanup()
    logger.info("Metrics server stopped")
