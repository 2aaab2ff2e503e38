"""Indexing sink contract and reference implementations."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from indexer.lib.models import Item, LogicalTimestamp

logger = logging.getLogger(__name__)

__all__ = [
    "Commit",
    "IndexingSink",
    "LoggingSink",
    "MemorySink",
]


class IndexingSink(ABC):
    """Downstream collaborator that indexes items and records progress.

    Both calls report success as a flag; a ``False`` never stops the run.
    """

    @abstractmethod
    def index(self, item: Item) -> bool:
        ...

    @abstractmethod
    def commit(self, at: LogicalTimestamp, count_since_last_commit: int) -> bool:
        ...


@dataclass(frozen=True)
class Commit:
    """A commit as seen by a sink."""

    at: LogicalTimestamp
    count: int


class LoggingSink(IndexingSink):
    """Sink that only reports what it is asked to do."""

    def __init__(self, log: logging.Logger = logger) -> None:
        self._log = log
        self.items_indexed = 0
        self.commits = 0

    def index(self, item: Item) -> bool:
        self._log.info("%s ...indexed.", item)
        self.items_indexed += 1
        return True

    def commit(self, at: LogicalTimestamp, count_since_last_commit: int) -> bool:
        self._log.info("Committed at ts(%s) after %d items.", at, count_since_last_commit)
        self.commits += 1
        return True

    def close(self) -> None:
        self._log.info("Indexed %d items.", self.items_indexed)


class MemorySink(IndexingSink):
    """Sink that keeps everything it receives, for inspection."""

    def __init__(self) -> None:
        self.items: List[Item] = []
        self.commits: List[Commit] = []

    def index(self, item: Item) -> bool:
        self.items.append(item)
        return True

    def commit(self, at: LogicalTimestamp, count_since_last_commit: int) -> bool:
        self.commits.append(Commit(at=at, count=count_since_last_commit))
        return True

    @property
    def indexed_timestamps(self) -> List[int]:
        return [item.produced_at.value for item in self.items]
