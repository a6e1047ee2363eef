"""
Client configuration.

Options are plain dataclasses validated in ``__post_init__``; invalid values
raise ``ClientConfigError`` at construction time. ``ClientOptions.from_mapping``
accepts the camelCase option names used by the platform SDKs
(``sharding.totalShards``) as well as their snake_case equivalents.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from edwiges.constants import (
    DEFAULT_API_VERSION,
    DEFAULT_GATEWAY_URL,
    DEFAULT_INTENTS,
    DEFAULT_REST_BASE_URL,
)
from edwiges.errors import ClientConfigError

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def normalize_intents(intents: int | Iterable[int] | None) -> int:
    """Collapse an intents bitmask or a list of intent bits into one integer.

    Lists are summed, matching how the bits are declared by callers
    (``[Intents.GUILDS, Intents.GUILD_MESSAGES]``).
    """
    if intents is None:
        return DEFAULT_INTENTS
    if isinstance(intents, bool):
        raise ClientConfigError("intents must be an int or a list of ints, got bool")
    if isinstance(intents, int):
        value = int(intents)
    else:
        try:
            bits = list(intents)
        except TypeError:
            raise ClientConfigError(
                f"intents must be an int or a list of ints, got {type(intents).__name__}"
            ) from None
        if not all(isinstance(bit, int) and not isinstance(bit, bool) for bit in bits):
            raise ClientConfigError("intents list must contain only ints")
        value = sum(int(bit) for bit in bits)
    if value < 0:
        raise ClientConfigError(f"intents must be >= 0, got {value}")
    return value


def _build(cls: type, values: Mapping[str, Any] | None) -> Any:
    if values is None:
        return cls()
    if isinstance(values, cls):
        return values
    if not isinstance(values, Mapping):
        raise ClientConfigError(f"{cls.__name__} expects a mapping, got {type(values).__name__}")
    known = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in values.items():
        name = _snake(key)
        if name not in known:
            raise ClientConfigError(f"Unknown option for {cls.__name__}: {key!r}")
        kwargs[name] = value
    return cls(**kwargs)


@dataclass
class RestOptions:
    """REST collaborator options."""

    api_version: int = DEFAULT_API_VERSION
    always_send_authorization_header: bool = False
    base_url: str = DEFAULT_REST_BASE_URL
    request_timeout_ms: int = 10000

    def __post_init__(self) -> None:
        if not isinstance(self.api_version, int) or self.api_version <= 0:
            msg = f"rest.api_version must be a positive int, got {self.api_version!r}"
            raise ClientConfigError(msg)
        if self.request_timeout_ms <= 0:
            msg = f"rest.request_timeout_ms must be > 0, got {self.request_timeout_ms}"
            raise ClientConfigError(msg)
        self.base_url = self.base_url.rstrip("/")


@dataclass
class ShardingOptions:
    """
    Gateway sharding options.

    Attributes:
        gateway_url: WebSocket endpoint of the gateway.
        total_shards: Shard count across the whole deployment.
        connect_one_shard_at_time: Wait for each shard's socket to open before
            connecting the next one.
        first_shard_id: First shard id owned by this process.
        last_shard_id: Last shard id owned by this process (inclusive).
            Defaults to ``total_shards - 1``.
        connect_timeout_ms: How long a serial connect waits for the previous
            shard's ``connected`` signal.
    """

    gateway_url: str = DEFAULT_GATEWAY_URL
    total_shards: int = 1
    connect_one_shard_at_time: bool = True
    first_shard_id: int = 0
    last_shard_id: int | None = None
    connect_timeout_ms: int = 10000

    def __post_init__(self) -> None:
        if not self.gateway_url.startswith(("ws://", "wss://")):
            msg = f"sharding.gateway_url must be a ws:// or wss:// URL, got {self.gateway_url!r}"
            raise ClientConfigError(msg)
        if not isinstance(self.total_shards, int) or self.total_shards < 1:
            msg = f"sharding.total_shards must be >= 1, got {self.total_shards!r}"
            raise ClientConfigError(msg)
        if self.last_shard_id is None:
            self.last_shard_id = self.total_shards - 1
        # An empty range (last == first - 1) is legal for idle cluster workers.
        if self.first_shard_id < 0 or self.last_shard_id < self.first_shard_id - 1:
            msg = (
                f"invalid shard range [{self.first_shard_id}, {self.last_shard_id}]"
            )
            raise ClientConfigError(msg)
        if self.last_shard_id >= self.total_shards:
            msg = (
                f"sharding.last_shard_id ({self.last_shard_id}) must be < "
                f"total_shards ({self.total_shards})"
            )
            raise ClientConfigError(msg)
        if self.connect_timeout_ms <= 0:
            msg = f"sharding.connect_timeout_ms must be > 0, got {self.connect_timeout_ms}"
            raise ClientConfigError(msg)

    @property
    def shard_ids(self) -> range:
        """Shard ids owned by this process."""
        last = self.total_shards - 1 if self.last_shard_id is None else self.last_shard_id
        return range(self.first_shard_id, last + 1)


@dataclass
class ClusteringOptions:
    """Worker process options."""

    total_workers: int = 1
    ready_timeout_ms: int = 60000

    def __post_init__(self) -> None:
        if not isinstance(self.total_workers, int) or self.total_workers < 1:
            msg = f"clustering.total_workers must be >= 1, got {self.total_workers!r}"
            raise ClientConfigError(msg)
        if self.ready_timeout_ms <= 0:
            msg = f"clustering.ready_timeout_ms must be > 0, got {self.ready_timeout_ms}"
            raise ClientConfigError(msg)


@dataclass
class ClientOptions:
    """Top-level client options."""

    intents: int = DEFAULT_INTENTS
    rest: RestOptions = field(default_factory=RestOptions)
    sharding: ShardingOptions = field(default_factory=ShardingOptions)
    clustering: ClusteringOptions = field(default_factory=ClusteringOptions)

    def __post_init__(self) -> None:
        self.intents = normalize_intents(self.intents)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ClientOptions:
        """
        Build options from a nested mapping.

        Example:
            ClientOptions.from_mapping({
                "intents": [Intents.GUILDS, Intents.GUILD_MESSAGES],
                "sharding": {"totalShards": 2, "connectOneShardAtTime": False},
                "clustering": {"totalWorkers": 2},
            })
        """
        data = data or {}
        unknown = set(data) - {"intents", "rest", "sharding", "clustering"}
        if unknown:
            raise ClientConfigError(f"Unknown client options: {sorted(unknown)}")
        return cls(
            intents=normalize_intents(data.get("intents")),
            rest=_build(RestOptions, data.get("rest")),
            sharding=_build(ShardingOptions, data.get("sharding")),
            clustering=_build(ClusteringOptions, data.get("clustering")),
        )

    @classmethod
    def coerce(cls, options: ClientOptions | Mapping[str, Any] | None) -> ClientOptions:
        """Accept either an options instance or a mapping."""
        if isinstance(options, cls):
            return options
        return cls.from_mapping(options)
