"""In-memory entity cache, populated by the built-in dispatch handlers."""

from __future__ import annotations

from collections import OrderedDict

from edwiges.models import Guild, Message, User


class ClientCache:
    """
    Per-process store of users, guilds and recent messages.

    Messages are kept in insertion order and evicted oldest-first once
    ``max_messages`` is exceeded.
    """

    def __init__(self, max_messages: int = 1000) -> None:
        if max_messages < 0:
            raise ValueError(f"max_messages must be >= 0, got {max_messages}")
        self._max_messages = max_messages
        self.users: dict[str, User] = {}
        self.guilds: dict[str, Guild] = {}
        self._messages: OrderedDict[str, Message] = OrderedDict()

    def add_user(self, user: User) -> None:
        self.users[user.id] = user

    def add_guild(self, guild: Guild) -> None:
        self.guilds[guild.id] = guild

    def remove_guild(self, guild_id: str) -> Guild | None:
        return self.guilds.pop(guild_id, None)

    def add_message(self, message: Message) -> None:
        if self._max_messages == 0:
            return
        self._messages[message.id] = message
        self._messages.move_to_end(message.id)
        while len(self._messages) > self._max_messages:
            self._messages.popitem(last=False)

    def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    def remove_message(self, message_id: str) -> Message | None:
        return self._messages.pop(message_id, None)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def clear(self) -> None:
        self.users.clear()
        self.guilds.clear()
        self._messages.clear()
