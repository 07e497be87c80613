"""Data models for memreport."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class MemoryKind(Enum):
    """Kind of memory region. Declaration order is the report order."""

    HEAP = "HEAP"
    NON_HEAP = "NON_HEAP"

    def __str__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        """Position of this kind in the report layout."""
        return list(MemoryKind).index(self)


@dataclass(slots=True, frozen=True)
class PoolUsage:
    """Usage of one named memory region. ``None`` means unknown or unbounded."""

    name: str
    kind: MemoryKind
    init_bytes: int | None
    committed_bytes: int | None
    max_bytes: int | None
    used_bytes: int | None


@dataclass(slots=True, frozen=True)
class MetricsSnapshot:
    """Immutable capture of process memory at one instant."""

    free_bytes: int | None
    total_bytes: int | None
    max_bytes: int | None  # None when the process has no limit
    runtime_start: datetime
    pools: tuple[PoolUsage, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "pools", sort_pools(self.pools))


def sort_pools(pools: Iterable[PoolUsage]) -> tuple[PoolUsage, ...]:
    """Order pools by kind, keeping the supplied order among equal kinds."""
    return tuple(sorted(pools, key=lambda pool: pool.kind.rank))
