"""Shared state for one indexing run."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from indexer.lib.models import LogicalTimestamp
from indexer.lib.observability import RunMetrics
from indexer.lib.sink import IndexingSink
from indexer.lib.source import DataSource

logger = logging.getLogger(__name__)

__all__ = ["IndexingContext"]


class IndexingContext:
    """Watermark, sizing and collaborators shared by every cursor layer.

    A single instance is passed by reference to all cursors and the job. The
    context owns the watermark; it only exposes the data source and sink.

    Args:
        source: Upstream data source
        sink: Indexing sink receiving items and commits
        chunk_size: Items requested per fetch
        batch_size: Item (or chunk-equivalent) threshold per commit
        latest_seen: Starting watermark
        metrics: Optional per-run metrics recorder
    """

    def __init__(
        self,
        source: Optional[DataSource],
        sink: Optional[IndexingSink],
        *,
        chunk_size: int = 10,
        batch_size: int = 18,
        latest_seen: LogicalTimestamp = LogicalTimestamp(0),
        metrics: Optional[RunMetrics] = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        self.source = source
        self.sink = sink
        self.chunk_size = chunk_size
        self.batch_size = batch_size
        self.metrics = metrics if metrics is not None else RunMetrics()
        self._latest_seen = latest_seen
        self._cancelled = threading.Event()

    @property
    def latest_seen(self) -> LogicalTimestamp:
        return self._latest_seen

    def update_if_later(self, candidate: LogicalTimestamp) -> None:
        """Move the watermark forward; earlier or equal values are ignored."""
        if candidate.is_later_than(self._latest_seen):
            self._latest_seen = candidate

    def cancel(self) -> None:
        """Ask the running cursors to stop at their next loop iteration."""
        logger.info("Cancellation requested at watermark %s", self._latest_seen)
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __repr__(self) -> str:
        return (
            f"IndexingContext(latest_seen={self._latest_seen}, "
            f"chunk_size={self.chunk_size}, batch_size={self.batch_size})"
        )
