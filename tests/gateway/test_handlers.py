"""Dispatch registry and built-in handler tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from edwiges.client import Client
from edwiges.gateway.handlers import (
    DispatchRegistry,
    default_registry,
    on_guild_create,
    on_guild_delete,
    on_message_create,
    on_message_delete,
    on_ready,
)
from edwiges.models import Guild, Message

MESSAGE = {
    "id": "500",
    "channel_id": "42",
    "guild_id": "7",
    "author": {"id": "9", "username": "alice"},
    "content": "hello",
}


@pytest.fixture()
def client() -> Client:
    return Client("token")


@pytest.fixture()
def shard() -> MagicMock:
    fake = MagicMock()
    fake.shard_id = 0
    return fake


class TestRegistry:
    def test_default_registry_contents(self) -> None:
        registry = default_registry()
        assert registry.event_types == {
            "READY",
            "GUILD_CREATE",
            "GUILD_DELETE",
            "MESSAGE_CREATE",
            "MESSAGE_DELETE",
        }

    def test_default_registry_is_fresh_each_time(self) -> None:
        first = default_registry()
        first.unregister("READY")
        assert "READY" in default_registry()

    def test_register_as_decorator(self) -> None:
        registry = DispatchRegistry()

        @registry.register("TYPING_START")
        def handler(client: Any, shard: Any, data: Any) -> None:
            pass

        assert registry.get("TYPING_START") is handler
        assert len(registry) == 1
        assert list(registry) == ["TYPING_START"]

    def test_get_none_and_unknown(self) -> None:
        registry = default_registry()
        assert registry.get(None) is None
        assert registry.get("NOPE") is None

    def test_copy_is_independent(self) -> None:
        registry = default_registry()
        clone = registry.copy()
        clone.unregister("READY")
        assert "READY" in registry
        assert "READY" not in clone


class TestBuiltinHandlers:
    def test_ready_marks_shard_and_caches_user(self, client: Client, shard: MagicMock) -> None:
        on_ready(client, shard, {"session_id": "abc", "user": {"id": "1", "username": "bot"}})

        shard.mark_ready.assert_called_once_with("abc")
        assert client.cache.users["1"].username == "bot"

    def test_ready_without_client_still_marks_shard(self, shard: MagicMock) -> None:
        on_ready(None, shard, {"session_id": "abc"})
        shard.mark_ready.assert_called_once_with("abc")

    def test_guild_create_and_delete(self, client: Client, shard: MagicMock) -> None:
        created: list[Guild] = []
        deleted: list[Guild] = []
        client.on("guildCreate", created.append)
        client.on("guildDelete", deleted.append)

        on_guild_create(client, shard, {"id": "7", "name": "Guild", "member_count": 3})
        assert client.cache.guilds["7"].name == "Guild"

        on_guild_delete(client, shard, {"id": "7", "unavailable": True})
        assert "7" not in client.cache.guilds
        assert created[0].id == "7"
        assert deleted[0].name == "Guild"

    def test_guild_delete_of_uncached_guild(self, client: Client, shard: MagicMock) -> None:
        deleted: list[Guild] = []
        client.on("guildDelete", deleted.append)

        on_guild_delete(client, shard, {"id": "8", "unavailable": True})

        assert deleted[0].id == "8"
        assert deleted[0].unavailable

    def test_message_create_emits_and_caches(self, client: Client, shard: MagicMock) -> None:
        messages: list[Message] = []
        client.on("messageCreate", messages.append)

        on_message_create(client, shard, MESSAGE)

        assert messages[0].content == "hello"
        assert messages[0].author.username == "alice"
        assert client.cache.get_message("500") is messages[0]

    def test_message_delete_reports_cached_message(self, client: Client, shard: MagicMock) -> None:
        deletes: list[tuple[str, str | None, Message | None]] = []
        client.on("messageDelete", lambda mid, cid, cached: deletes.append((mid, cid, cached)))

        on_message_create(client, shard, MESSAGE)
        on_message_delete(client, shard, {"id": "500", "channel_id": "42"})
        on_message_delete(client, shard, {"id": "501", "channel_id": "42"})

        assert deletes[0][0] == "500"
        assert deletes[0][2] is not None
        assert deletes[1] == ("501", "42", None)

    def test_invalid_message_raises(self, client: Client, shard: MagicMock) -> None:
        with pytest.raises(ValueError):
            on_message_create(client, shard, {"id": "1"})
