"""Value types carried through the cursor cascade."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

__all__ = [
    "LogicalTimestamp",
    "Item",
    "AvailabilityStatus",
    "Availability",
    "Fetch",
]


@dataclass(frozen=True, order=True)
class LogicalTimestamp:
    """Monotonic progress marker.

    Instances are immutable; the watermark held by a context only moves via
    ``IndexingContext.update_if_later``.
    """

    value: int = 0

    def is_later_than(self, other: "LogicalTimestamp") -> bool:
        return self.value > other.value

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True, init=False)
class Item:
    """An indexable record produced by a data source.

    The payload is stored as ordered key/value pairs and exposed read-only;
    items hash by ``produced_at`` so they can be collected in sets even when
    payload values are unhashable.
    """

    produced_at: LogicalTimestamp
    pairs: Tuple[Tuple[str, Any], ...] = ()

    def __init__(self, produced_at: LogicalTimestamp, payload: Optional[Mapping[str, Any]] = None) -> None:
        object.__setattr__(self, "produced_at", produced_at)
        object.__setattr__(self, "pairs", tuple(dict(payload or {}).items()))

    @property
    def payload(self) -> Mapping[str, Any]:
        return MappingProxyType(dict(self.pairs))

    def __hash__(self) -> int:
        return hash(self.produced_at)

    def __str__(self) -> str:
        data = ",".join(str(value) for _, value in self.pairs)
        return f"ts({self.produced_at}) data({data})"


class AvailabilityStatus(Enum):
    """Whether a cursor can deliver another item."""

    YES = "yes"
    PERHAPS = "perhaps"
    NO = "no"


@dataclass(frozen=True)
class Availability:
    """Availability status plus the latest watermark seen while producing it."""

    status: AvailabilityStatus
    latest_known: LogicalTimestamp = field(default_factory=LogicalTimestamp)

    @classmethod
    def yes(cls, latest_known: LogicalTimestamp) -> "Availability":
        return cls(AvailabilityStatus.YES, latest_known)

    @classmethod
    def perhaps(cls, latest_known: LogicalTimestamp) -> "Availability":
        return cls(AvailabilityStatus.PERHAPS, latest_known)

    @classmethod
    def no(cls, latest_known: LogicalTimestamp) -> "Availability":
        return cls(AvailabilityStatus.NO, latest_known)

    @property
    def is_yes(self) -> bool:
        return self.status is AvailabilityStatus.YES

    @property
    def is_perhaps(self) -> bool:
        return self.status is AvailabilityStatus.PERHAPS

    @property
    def is_no(self) -> bool:
        return self.status is AvailabilityStatus.NO

    def __str__(self) -> str:
        return f"{self.status.value} (latest known {self.latest_known})"


@dataclass(frozen=True)
class Fetch:
    """One chunk as returned by ``DataSource.retrieve``.

    ``items`` carry ``produced_at`` values in ``(last_seen, latest_known]``
    and may skip timestamps in that range.
    """

    latest_known: LogicalTimestamp
    exhausted: bool = False
    items: Tuple[Item, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
