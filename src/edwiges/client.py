"""
Client - the per-process composition root.

Holds one ShardPool, one RestClient and one ClientCache, and exposes the
events application code listens to::

    client = Client(token, {"sharding": {"totalShards": 2}})

    @client.on("messageCreate")
    async def on_message(message): ...

    await client.init()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp
from pydantic import ValidationError

from edwiges.cache import ClientCache
from edwiges.config import ClientOptions
from edwiges.errors import ClientConfigError, IdentityResolutionError, RestError
from edwiges.events import EventEmitter
from edwiges.gateway.handlers import DispatchRegistry, default_registry
from edwiges.gateway.pool import ShardPool
from edwiges.models import User
from edwiges.rest.client import RestClient

logger = logging.getLogger(__name__)


class Client(EventEmitter):
    """
    Gateway client for one process.

    Events:
        ready(user): every owned shard processed READY.
        shardConnected(shard_id) / shardDisconnected(shard_id, close_code)
        shardReady(shard_id)
        pingUpdate(shard_id, latency_ms)
        raw(shard_id, event_type, data): every dispatch.
        unhandledEvent(event_type, data)
        handlerError(shard_id, event_type, exc)
        error(exc)
        guildCreate(guild) / guildDelete(guild)
        messageCreate(message) / messageDelete(message_id, channel_id, cached)
    """

    def __init__(
        self,
        token: str,
        options: ClientOptions | Mapping[str, Any] | None = None,
        *,
        registry: DispatchRegistry | None = None,
        rest: RestClient | None = None,
        cache: ClientCache | None = None,
        time_fn: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            token: Bot token.
            options: ClientOptions or an options mapping.
            registry: Dispatch handlers (built-in handlers if omitted).
            rest: REST client override.
            cache: Cache override.
            time_fn: Millisecond clock for the shards.

        Raises:
            ClientConfigError: On a missing token or invalid options.
        """
        super().__init__()
        if not token or not isinstance(token, str):
            raise ClientConfigError("Client(token): token is missing or is not a string.")

        self._token = token
        self.options = ClientOptions.coerce(options)
        self.rest = rest or RestClient(token, self.options.rest)
        self.cache = cache or ClientCache()
        self.registry = registry if registry is not None else default_registry()
        self.shards = ShardPool(
            token,
            self.options,
            client=self,
            registry=self.registry,
            time_fn=time_fn,
        )
        self.user: User | None = None
        self.ready = False

        self.shards.on("connected", lambda shard_id: self.emit("shardConnected", shard_id))
        self.shards.on("disconnected", self._on_shard_disconnected)
        self.shards.on("ready", lambda shard_id: self.emit("shardReady", shard_id))
        self.shards.on("pingUpdate", lambda shard_id, latency: self.emit("pingUpdate", shard_id, latency))
        self.shards.on("dispatch", lambda shard_id, t, d: self.emit("raw", shard_id, t, d))
        self.shards.on("unhandledEvent", lambda _shard_id, t, d: self.emit("unhandledEvent", t, d))
        self.shards.on(
            "handlerError", lambda shard_id, t, exc: self.emit("handlerError", shard_id, t, exc)
        )
        self.shards.on("error", lambda _shard_id, exc: self.emit("error", exc))

    async def init(self) -> bool:
        """
        Resolve the authenticated user, then connect the shard pool.

        If the identity lookup fails the error is logged and emitted and no
        gateway session is opened.

        Returns:
            True if the shard pool was started.
        """
        try:
            me = await self.rest.get_current_user()
            self.user = User.model_validate(me)
        except (RestError, aiohttp.ClientError, TimeoutError, ValidationError) as e:
            logger.error(
                "Identity resolution failed, not connecting shards",
                extra={"error": repr(e)},
            )
            self.emit("error", IdentityResolutionError(f"Could not resolve current user: {e}", e))
            return False

        self.cache.add_user(self.user)
        logger.info(
            "Identity resolved",
            extra={"user_id": self.user.id, "username": self.user.username},
        )
        await self.shards.init()
        return True

    def mark_shard_ready(self, shard_id: int) -> None:
        """Called by the READY handler; emits ``ready`` once every shard is ready."""
        if self.ready or not self.shards.all_ready:
            return
        self.ready = True
        logger.info("Client ready", extra={"shards": len(self.shards)})
        self.emit("ready", self.user)

    def _on_shard_disconnected(self, shard_id: int, close_code: int | None) -> None:
        self.ready = False
        self.emit("shardDisconnected", shard_id, close_code)

    @property
    def latency_ms(self) -> float | None:
        return self.shards.latency_ms

    async def close(self) -> None:
        """Close all shards and the REST session."""
        await self.shards.close()
        await self.rest.close()
        self.ready = False

    def health(self) -> dict[str, Any]:
        """Health summary for the /healthz endpoint."""
        metrics = self.shards.get_metrics()
        return {
            "status": "ok" if self.ready else "starting",
            "user_id": self.user.id if self.user else None,
            "owned_shards": metrics.owned_shards,
            "open_shards": metrics.open_shards,
            "ready_shards": metrics.ready_shards,
            "latency_ms": metrics.average_latency_ms,
        }

    async def run_forever(self) -> None:
        """Start the client and block until cancelled, then close it."""
        try:
            await self.init()
            await asyncio.Event().wait()
        finally:
            await self.close()
