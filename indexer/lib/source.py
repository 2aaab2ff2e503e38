"""Data source contract and reference implementations.

A data source hands out chunks of items relative to a watermark. It may be
sparse: a chunk can hold fewer items than requested (or none) without the
source being exhausted.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from indexer.lib.models import Fetch, Item, LogicalTimestamp
from indexer.lib.result import Result

logger = logging.getLogger(__name__)

__all__ = [
    "DataSource",
    "RandomDataSource",
    "SequenceDataSource",
]


class DataSource(ABC):
    """Upstream collaborator the chunk cursor pulls from."""

    @abstractmethod
    def globally_available(self) -> int:
        """Upper bound on the number of timestamps this source will ever serve."""
        ...

    @abstractmethod
    def retrieve(self, last_seen: LogicalTimestamp, count: int) -> Result[Fetch]:
        """Fetch up to ``count`` timestamps after ``last_seen``.

        Returns:
            A successful Result with the Fetch, or a failed Result carrying a
            SourceFailure.
        """
        ...


class RandomDataSource(DataSource):
    """Simulated source serving consecutive timestamps with random gaps.

    Every served timestamp counts against ``globally_available``. A timestamp
    becomes an item only when a draw in 1..100 exceeds
    ``acceptance_threshold``, so a threshold of 0 keeps everything and 100
    keeps nothing.
    """

    def __init__(
        self,
        globally_available: int = 81,
        acceptance_threshold: int = 0,
        seed: Optional[int] = None,
    ) -> None:
        self._globally_available = globally_available
        self.acceptance_threshold = acceptance_threshold
        self.total_served = 0
        self._rng = random.Random(seed)

    def globally_available(self) -> int:
        return self._globally_available

    def retrieve(self, last_seen: LogicalTimestamp, count: int) -> Result[Fetch]:
        exhausted = False
        latest_known = last_seen
        items: List[Item] = []

        start = last_seen.value + 1
        for ts in range(start, start + count):
            if self.total_served >= self.globally_available():
                exhausted = True
                break

            latest_known = LogicalTimestamp(ts)
            if self._rng.randint(1, 100) > self.acceptance_threshold:
                items.append(
                    Item(
                        produced_at=latest_known,
                        payload={"i": ts * 2, "j": ts * 3, "k": ts * 4},
                    )
                )
            self.total_served += 1

        logger.debug(
            "Retrieved %d items. Latest known timestamp is %s.",
            len(items),
            latest_known,
        )
        return Result.success(Fetch(latest_known=latest_known, exhausted=exhausted, items=items))


class SequenceDataSource(DataSource):
    """Deterministic in-memory source over pre-built items.

    Timestamps ``1..horizon`` are served in order; only those with a matching
    item produce one, which makes gaps (sparse chunks) easy to set up.

    Example:
        source = SequenceDataSource(
            [Item(LogicalTimestamp(t)) for t in (2, 3, 9)],
            horizon=12,
        )
    """

    def __init__(self, items: Iterable[Item], horizon: Optional[int] = None) -> None:
        self._items = {item.produced_at.value: item for item in items}
        if horizon is None:
            horizon = max(self._items, default=0)
        self.horizon = horizon
        self.retrieve_calls: List[LogicalTimestamp] = []

    @classmethod
    def from_timestamps(cls, timestamps: Iterable[int], horizon: Optional[int] = None) -> "SequenceDataSource":
        items = [Item(LogicalTimestamp(ts), {"value": ts}) for ts in timestamps]
        return cls(items, horizon=horizon)

    def globally_available(self) -> int:
        return self.horizon

    def retrieve(self, last_seen: LogicalTimestamp, count: int) -> Result[Fetch]:
        self.retrieve_calls.append(last_seen)

        exhausted = False
        latest_known = last_seen
        items: List[Item] = []

        start = last_seen.value + 1
        for ts in range(start, start + count):
            if ts > self.horizon:
                exhausted = True
                break
            latest_known = LogicalTimestamp(ts)
            if ts in self._items:
                items.append(self._items[ts])

        return Result.success(Fetch(latest_known=latest_known, exhausted=exhausted, items=items))
