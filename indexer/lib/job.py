"""Indexing job runner and processing strategies.

The job owns nothing but a context and a strategy. Strategies decide how
items are pulled and processed, so indexing back-ends can be swapped
without touching the run loop:

    job = IndexingJob(context, CursorStrategy())
    result = job.run()
    if not result.success:
        ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from indexer.lib.context import IndexingContext
from indexer.lib.cursors import ResumableCursor
from indexer.lib.errors import ConstructionFailure, IndexingError
from indexer.lib.models import Item, LogicalTimestamp
from indexer.lib.observability import get_structlog_logger
from indexer.lib.result import Result
from indexer.lib.sink import IndexingSink
from indexer.lib.source import DataSource

logger = logging.getLogger(__name__)

__all__ = [
    "IndexingStrategy",
    "CursorStrategy",
    "DryRunStrategy",
    "IndexingJob",
    "JobResult",
    "run_indexing",
]


class IndexingStrategy(ABC):
    """Processing capability injected into an IndexingJob."""

    def __init__(self) -> None:
        self.context: Optional[IndexingContext] = None
        self.cursor: Optional[ResumableCursor] = None

    def reset(self, context: IndexingContext) -> Result[None]:
        """Bind to ``context`` and build a fresh cursor cascade."""
        logger.debug("Cursor cascade being initialized.")
        created = ResumableCursor.create(context)
        if not created.ok:
            return Result.failure(created.error)  # type: ignore[arg-type]
        self.context = context
        self.cursor = created.unwrap()
        return Result.success(None)

    @abstractmethod
    def run(self) -> Result[int]:
        """Run the strategy, returning the number of items processed."""
        ...

    def process(self, item: Item) -> Result[bool]:
        """Index one item and move the watermark to it.

        The sink's flag is returned as the value; a rejected item is logged
        and the run goes on.
        """
        context = self.context
        if context is None or context.sink is None:
            return Result.failure(
                ConstructionFailure("Strategy used before reset()", layer="job", missing="sink")
            )

        indexed = context.sink.index(item)
        context.update_if_later(item.produced_at)

        context.metrics.increment("items_processed")
        if indexed:
            context.metrics.increment("items_indexed")
        else:
            context.metrics.increment("index_failures")
            logger.warning("Sink rejected item at %s; continuing", item.produced_at)
        return Result.success(indexed)


class CursorStrategy(IndexingStrategy):
    """Pulls every item from the resumable cursor and processes it."""

    def run(self) -> Result[int]:
        context, cursor = self.context, self.cursor
        if context is None or cursor is None:
            return Result.failure(
                ConstructionFailure("Strategy used before reset()", layer="job", missing="cursor")
            )

        processed = 0
        while True:
            advanced = cursor.advance(context.latest_seen)
            if not advanced.ok:
                return Result.failure(advanced.error)  # type: ignore[arg-type]
            if advanced.unwrap().is_no:
                return Result.success(processed)

            current = cursor.current()
            if not current.ok:
                return Result.failure(current.error)  # type: ignore[arg-type]

            outcome = self.process(current.unwrap())
            if not outcome.ok:
                return Result.failure(outcome.error)  # type: ignore[arg-type]
            processed += 1


class DryRunStrategy(IndexingStrategy):
    """Builds the cascade but indexes nothing.

    Construction failures still surface from ``reset``, which makes this a
    cheap wiring check.
    """

    def run(self) -> Result[int]:
        logger.info("DRY RUN: cursor cascade built, no items pulled")
        return Result.success(0)


class JobResult:
    """Structured result from an indexing run."""

    def __init__(
        self,
        success: bool,
        *,
        items_processed: int = 0,
        watermark: LogicalTimestamp = LogicalTimestamp(0),
        elapsed_seconds: float = 0.0,
        job_name: str = "",
        error: Optional[BaseException] = None,
        metrics: Optional[Dict[str, Any]] = None,
    ):
        self.success = success
        self.items_processed = items_processed
        self.watermark = watermark
        self.elapsed_seconds = elapsed_seconds
        self.job_name = job_name
        self.error = error
        self.metrics = metrics or {}

    @property
    def commits(self) -> int:
        return self.metrics.get("counters", {}).get("commits", 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "items_processed": self.items_processed,
            "watermark": self.watermark.value,
            "elapsed_seconds": self.elapsed_seconds,
            "job_name": self.job_name,
            "error": self.error.to_dict() if isinstance(self.error, IndexingError) else (
                str(self.error) if self.error else None
            ),
            "metrics": self.metrics,
        }

    def __repr__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return (
            f"JobResult({status}, "
            f"items={self.items_processed}, "
            f"watermark={self.watermark}, "
            f"commits={self.commits}, "
            f"elapsed={self.elapsed_seconds:.2f}s)"
        )


class IndexingJob:
    """Runs one strategy against one context.

    This is the only place where failures from the cascade are handled: they
    are logged and end the run with a failed JobResult.
    """

    def __init__(
        self,
        context: IndexingContext,
        strategy: Optional[IndexingStrategy] = None,
        *,
        name: str = "indexing",
    ) -> None:
        self.context = context
        self.strategy = strategy or CursorStrategy()
        self.name = name

    def run(self) -> JobResult:
        context = self.context
        metrics = context.metrics
        job_logger = get_structlog_logger(f"indexer.{self.name}")

        metrics.begin_run()
        processed_before = metrics.get("items_processed")
        processed: Optional[int] = None

        start = time.time()
        job_logger.info(
            "job_started",
            job=self.name,
            strategy=type(self.strategy).__name__,
            watermark=context.latest_seen.value,
            chunk_size=context.chunk_size,
            batch_size=context.batch_size,
        )

        error: Optional[BaseException] = None
        try:
            with metrics.time_phase("setup"):
                outcome: Result[Any] = self.strategy.reset(context)
            if outcome.ok:
                with metrics.time_phase("index"):
                    outcome = self.strategy.run()
                if outcome.ok:
                    processed = outcome.unwrap()
            if not outcome.ok:
                error = outcome.error
        except Exception as exc:
            logger.exception("Indexing job %s raised: %s", self.name, exc)
            error = exc

        elapsed = time.time() - start
        metrics.finish()
        if processed is None:
            processed = metrics.get("items_processed") - processed_before

        if error is not None:
            job_logger.error(
                "job_failed",
                job=self.name,
                error_type=type(error).__name__,
                error=getattr(error, "message", str(error)),
                details=getattr(error, "details", {}),
                watermark=context.latest_seen.value,
                elapsed_seconds=round(elapsed, 2),
            )
        else:
            job_logger.info(
                "job_completed",
                job=self.name,
                items=processed,
                commits=metrics.run_counters().get("commits", 0),
                watermark=context.latest_seen.value,
                elapsed_seconds=round(elapsed, 2),
            )

        return JobResult(
            success=error is None,
            items_processed=processed,
            watermark=context.latest_seen,
            elapsed_seconds=elapsed,
            job_name=self.name,
            error=error,
            metrics=metrics.summary(),
        )


def run_indexing(
    source: DataSource,
    sink: IndexingSink,
    *,
    chunk_size: int = 10,
    batch_size: int = 18,
    start_at: int = 0,
    dry_run: bool = False,
    name: str = "indexing",
) -> JobResult:
    """Build a context and job for ``source``/``sink`` and run it.

    Example:
        result = run_indexing(RandomDataSource(seed=7), LoggingSink())
        print(result.items_processed, result.watermark)
    """
    context = IndexingContext(
        source,
        sink,
        chunk_size=chunk_size,
        batch_size=batch_size,
        latest_seen=LogicalTimestamp(start_at),
    )
    strategy: IndexingStrategy = DryRunStrategy() if dry_run else CursorStrategy()
    return IndexingJob(context, strategy, name=name).run()
