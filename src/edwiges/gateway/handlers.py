"""
Dispatch handlers keyed by gateway event type.

The registry is a static mapping built once at startup. A shard looks up the
dispatch ``t`` field here; unknown types are reported as ``unhandledEvent``.
Handlers receive ``(client, shard, data)`` and may be sync or async.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

from edwiges.models import Guild, Message, User

if TYPE_CHECKING:
    from edwiges.client import Client
    from edwiges.gateway.shard import GatewayShard

DispatchHandler = Callable[["Client | None", "GatewayShard", Any], "Awaitable[None] | None"]


class DispatchRegistry:
    """Mapping of dispatch event type to handler."""

    def __init__(self, handlers: Mapping[str, DispatchHandler] | None = None) -> None:
        self._handlers: dict[str, DispatchHandler] = dict(handlers or {})

    def register(self, event_type: str, handler: DispatchHandler | None = None) -> Any:
        """Register ``handler`` for ``event_type``; usable as a decorator."""
        if handler is None:

            def decorator(fn: DispatchHandler) -> DispatchHandler:
                self._handlers[event_type] = fn
                return fn

            return decorator

        self._handlers[event_type] = handler
        return handler

    def unregister(self, event_type: str) -> None:
        self._handlers.pop(event_type, None)

    def get(self, event_type: str | None) -> DispatchHandler | None:
        if event_type is None:
            return None
        return self._handlers.get(event_type)

    def copy(self) -> DispatchRegistry:
        return DispatchRegistry(self._handlers)

    @property
    def event_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)


def on_ready(client: Client | None, shard: GatewayShard, data: Any) -> None:
    """READY: the identify was accepted and the session is live."""
    session_id = data.get("session_id") if isinstance(data, dict) else None
    shard.mark_ready(session_id)
    if client is None:
        return
    if isinstance(data, dict) and isinstance(data.get("user"), dict):
        client.cache.add_user(User.model_validate(data["user"]))
    client.mark_shard_ready(shard.shard_id)


def on_guild_create(client: Client | None, shard: GatewayShard, data: Any) -> None:
    if client is None:
        return
    guild = Guild.model_validate(data)
    client.cache.add_guild(guild)
    client.emit("guildCreate", guild)


def on_guild_delete(client: Client | None, shard: GatewayShard, data: Any) -> None:
    if client is None:
        return
    guild = client.cache.remove_guild(data["id"]) or Guild.model_validate(data)
    client.emit("guildDelete", guild)


def on_message_create(client: Client | None, shard: GatewayShard, data: Any) -> None:
    if client is None:
        return
    message = Message.model_validate(data)
    client.cache.add_message(message)
    client.emit("messageCreate", message)


def on_message_delete(client: Client | None, shard: GatewayShard, data: Any) -> None:
    if client is None:
        return
    cached = client.cache.remove_message(data["id"])
    client.emit("messageDelete", data["id"], data.get("channel_id"), cached)


_DEFAULT_HANDLERS: Mapping[str, DispatchHandler] = {
    "READY": on_ready,
    "GUILD_CREATE": on_guild_create,
    "GUILD_DELETE": on_guild_delete,
    "MESSAGE_CREATE": on_message_create,
    "MESSAGE_DELETE": on_message_delete,
}


def default_registry() -> DispatchRegistry:
    """Fresh registry holding the built-in handlers."""
    return DispatchRegistry(_DEFAULT_HANDLERS)
