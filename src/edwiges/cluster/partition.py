"""Splitting the shard id space across worker processes."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from edwiges.errors import ClientConfigError


@dataclass(frozen=True)
class ShardRange:
    """
    Inclusive shard id range ``[first, last]``.

    An empty range is represented as ``last == first - 1``.
    """

    first: int
    last: int

    def __post_init__(self) -> None:
        if self.first < 0 or self.last < self.first - 1:
            raise ClientConfigError(f"invalid shard range [{self.first}, {self.last}]")

    def __len__(self) -> int:
        return self.last - self.first + 1

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.first, self.last + 1))

    def __contains__(self, shard_id: object) -> bool:
        return isinstance(shard_id, int) and self.first <= shard_id <= self.last

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def __str__(self) -> str:
        return f"[{self.first}, {self.last}]"


def partition_shards(total_shards: int, total_workers: int) -> list[ShardRange]:
    """
    Divide ``[0, total_shards)`` into ``total_workers`` contiguous ranges.

    Sizes differ by at most one; the first ``total_shards % total_workers``
    workers take the extra id. With fewer shards than workers, the trailing
    workers get empty ranges.

    Raises:
        ClientConfigError: If ``total_shards < 0`` or ``total_workers < 1``.
    """
    if total_shards < 0:
        raise ClientConfigError(f"total_shards must be >= 0, got {total_shards}")
    if total_workers < 1:
        raise ClientConfigError(f"total_workers must be >= 1, got {total_workers}")

    base, extra = divmod(total_shards, total_workers)
    ranges: list[ShardRange] = []
    first = 0
    for worker_id in range(total_workers):
        size = base + (1 if worker_id < extra else 0)
        ranges.append(ShardRange(first=first, last=first + size - 1))
        first += size
    return ranges
