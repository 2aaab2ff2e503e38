"""Three-layer cursor cascade over a sparse data source.

The layers form a strict ownership chain, each one recreating the cursor
beneath it instead of mutating it:

    ResumableCursor -> BatchCursor -> ChunkCursor -> DataSource

- ChunkCursor fetches one bounded chunk and iterates it.
- BatchCursor strings chunks together and commits the sink at batch
  boundaries.
- ResumableCursor absorbs the PERHAPS answers the batch layer leaves open so
  callers only ever see YES or NO.

Every call returns a :class:`~indexer.lib.result.Result`; a failure is never
confused with a "no data" answer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from indexer.lib.context import IndexingContext
from indexer.lib.errors import (
    ConstructionFailure,
    IndexingError,
    NotReady,
    RunCancelled,
    SourceFailure,
)
from indexer.lib.models import Availability, Item, LogicalTimestamp
from indexer.lib.result import Result

logger = logging.getLogger(__name__)

__all__ = [
    "Cursor",
    "ChunkCursor",
    "BatchCursor",
    "ResumableCursor",
]


class Cursor(ABC):
    """Stateful, single-owner cursor bound to one context."""

    layer: str = "cursor"

    def __init__(self, context: IndexingContext) -> None:
        self.context = context

    @abstractmethod
    def advance(self, last_seen: LogicalTimestamp) -> Result[Availability]:
        """Move to the next item, if any.

        Args:
            last_seen: Watermark the caller has processed up to

        Returns:
            Availability of a next item, or a failure
        """
        ...

    @abstractmethod
    def current(self) -> Result[Item]:
        """Return the item the cursor is positioned on."""
        ...

    @abstractmethod
    def reset(self, context: IndexingContext) -> Result[None]:
        """Rebind to ``context`` and drop all fetched state."""
        ...

    @classmethod
    def _check_context(
        cls,
        context: Optional[IndexingContext],
        *collaborators: str,
    ) -> Optional[IndexingError]:
        if context is None:
            return ConstructionFailure(
                f"Cannot build a {cls.layer} cursor without a context",
                layer=cls.layer,
                missing="context",
            )
        for name in collaborators:
            if getattr(context, name, None) is None:
                return ConstructionFailure(
                    f"Cannot build a {cls.layer} cursor without a {name}",
                    layer=cls.layer,
                    missing=name,
                    suggestion=f"Pass a {name} to IndexingContext.",
                )
        return None

    def _cancelled(self, last_seen: LogicalTimestamp) -> Optional[Result[Availability]]:
        if not self.context.cancelled:
            return None
        logger.info(
            "%s cursor stopping: run cancelled at %s",
            self.layer,
            last_seen,
            extra={"layer": self.layer, "watermark": last_seen.value},
        )
        return Result.failure(RunCancelled(layer=self.layer, watermark=last_seen.value))


class ChunkCursor(Cursor):
    """Fetches one chunk relative to a watermark and iterates its items.

    The first ``advance`` fetches; later calls move the read pointer. A fetch
    whose latest known timestamp does not move past ``last_seen`` counts as
    exhausted, so a stalled source cannot keep the upper layers probing.
    """

    layer = "chunk"

    def __init__(self, context: IndexingContext) -> None:
        super().__init__(context)
        self._clear(context.latest_seen)

    @classmethod
    def create(cls, context: Optional[IndexingContext]) -> Result["ChunkCursor"]:
        error = cls._check_context(context, "source")
        if error is not None:
            return Result.failure(error)
        assert context is not None
        context.metrics.cursor_opened(cls.layer)
        return Result.success(cls(context))

    def _clear(self, latest_known: LogicalTimestamp) -> None:
        self._retrieved = False
        self._exhausted = False
        self._items: Tuple[Item, ...] = ()
        self._position = 0
        self._latest_known = latest_known

    @property
    def retrieved(self) -> bool:
        return self._retrieved

    @property
    def latest_known(self) -> LogicalTimestamp:
        return self._latest_known

    def advance(self, last_seen: LogicalTimestamp) -> Result[Availability]:
        if not self._retrieved:
            fetched = self._retrieve(last_seen)
            if not fetched.ok:
                return fetched
            availability = fetched.unwrap()
        else:
            if self._position < len(self._items):
                self._position += 1
            availability = self._availability()

        if availability.is_perhaps:
            logger.debug("Perhaps more data available after %s.", availability.latest_known)
        elif availability.is_no:
            logger.debug("No more data available after %s.", availability.latest_known)

        return Result.success(availability)

    def current(self) -> Result[Item]:
        if not self._retrieved or self._position >= len(self._items):
            return Result.failure(
                NotReady(
                    layer=self.layer,
                    details={
                        "retrieved": self._retrieved,
                        "position": self._position,
                        "buffered": len(self._items),
                    },
                )
            )
        return Result.success(self._items[self._position])

    def reset(self, context: IndexingContext) -> Result[None]:
        error = self._check_context(context, "source")
        if error is not None:
            return Result.failure(error)
        self.context = context
        self._clear(context.latest_seen)
        return Result.success(None)

    def _availability(self) -> Availability:
        if self._position < len(self._items):
            return Availability.yes(self._latest_known)
        if self._exhausted:
            return Availability.no(self._latest_known)
        return Availability.perhaps(self._latest_known)

    def _retrieve(self, last_seen: LogicalTimestamp) -> Result[Availability]:
        source = self.context.source
        assert source is not None
        self._latest_known = last_seen

        try:
            fetched = source.retrieve(last_seen, self.context.chunk_size)
        except Exception as exc:
            return Result.failure(
                SourceFailure(
                    "Data source raised while retrieving a chunk",
                    layer=self.layer,
                    last_seen=last_seen.value,
                    cause=exc,
                )
            )

        if not fetched.ok:
            error = fetched.error
            if not isinstance(error, SourceFailure):
                error = SourceFailure(
                    "Data source reported a failure",
                    layer=self.layer,
                    last_seen=last_seen.value,
                    cause=error,
                )
            return Result.failure(error)

        fetch = fetched.unwrap()
        self._retrieved = True
        self.context.metrics.increment("fetches")
        self.context.metrics.increment("items_fetched", len(fetch.items))

        if not fetch.latest_known.is_later_than(last_seen):
            # No progress: nothing in (last_seen, latest_known] can exist.
            logger.debug(
                "Fetch after %s did not advance (latest known %s); treating as exhausted.",
                last_seen,
                fetch.latest_known,
            )
            self._items = ()
            self._exhausted = True
            return Result.success(Availability.no(last_seen))

        self._items = fetch.items
        self._position = 0
        self._exhausted = fetch.exhausted
        self._latest_known = fetch.latest_known
        return Result.success(self._availability())


class BatchCursor(Cursor):
    """Drives chunk cursors until a batch is worth committing.

    ``items_since_commit`` counts YES answers since the last commit;
    ``chunks_since_reset`` counts chunk cursors opened since the batch began.
    A PERHAPS from the chunk layer either commits (batch full, or enough
    chunks tried to cover a batch) and is passed upward unresolved, or moves
    the watermark forward and opens a fresh chunk.
    """

    layer = "batch"

    def __init__(self, context: IndexingContext) -> None:
        super().__init__(context)
        self.items_since_commit = 0
        self.chunks_since_reset = 0
        self._lower: Optional[ChunkCursor] = None

    @classmethod
    def create(cls, context: Optional[IndexingContext]) -> Result["BatchCursor"]:
        error = cls._check_context(context, "source", "sink")
        if error is not None:
            return Result.failure(error)
        assert context is not None
        cursor = cls(context)
        opened = cursor.reset(context)
        if not opened.ok:
            return Result.failure(opened.error)  # type: ignore[arg-type]
        context.metrics.cursor_opened(cls.layer)
        return Result.success(cursor)

    @property
    def lower(self) -> Optional[ChunkCursor]:
        return self._lower

    def advance(self, last_seen: LogicalTimestamp) -> Result[Availability]:
        while True:
            cancelled = self._cancelled(last_seen)
            if cancelled is not None:
                return cancelled

            assert self._lower is not None
            res = self._lower.advance(last_seen)
            if not res.ok:
                return res
            availability = res.unwrap()

            if availability.is_yes:
                self.items_since_commit += 1
                return res

            if availability.is_no:
                self._commit(last_seen)
                return res

            if self._intermediate_commit_needed():
                self._commit(last_seen)
                return res

            self.context.update_if_later(availability.latest_known)
            opened = self._open_chunk()
            if not opened.ok:
                return Result.failure(opened.error)  # type: ignore[arg-type]
            last_seen = self.context.latest_seen

    def current(self) -> Result[Item]:
        if self._lower is None:
            return Result.failure(NotReady(layer=self.layer))
        return self._lower.current()

    def reset(self, context: IndexingContext) -> Result[None]:
        error = self._check_context(context, "source", "sink")
        if error is not None:
            return Result.failure(error)
        self.context = context
        self.items_since_commit = 0
        self.chunks_since_reset = 0
        return self._open_chunk()

    def _open_chunk(self) -> Result[None]:
        logger.debug("Chunk being initialized at %s.", self.context.latest_seen)
        created = ChunkCursor.create(self.context)
        if not created.ok:
            return Result.failure(created.error)  # type: ignore[arg-type]
        self._lower = created.unwrap()
        self.chunks_since_reset += 1
        return Result.success(None)

    def _intermediate_commit_needed(self) -> bool:
        batch_size = self.context.batch_size
        batch_full = self.items_since_commit > 0 and self.items_since_commit >= batch_size
        chunks_cover_batch = self.chunks_since_reset * self.context.chunk_size >= batch_size
        return batch_full or chunks_cover_batch

    def _commit(self, at: LogicalTimestamp) -> None:
        sink = self.context.sink
        assert sink is not None
        count = self.items_since_commit

        succeeded = sink.commit(at, count)
        self.items_since_commit = 0

        self.context.metrics.increment("commits")
        if not succeeded:
            self.context.metrics.increment("commit_failures")
            logger.warning(
                "Sink rejected commit at %s after %d items; continuing",
                at,
                count,
                extra={"layer": self.layer, "watermark": at.value},
            )
        else:
            logger.debug("Committed at %s after %d items.", at, count)


class ResumableCursor(Cursor):
    """Top-level cursor presenting a plain YES/NO stream.

    Each PERHAPS from the batch layer moves the context watermark to the
    reported value and starts a new batch from there.
    """

    layer = "resumable"

    def __init__(self, context: IndexingContext) -> None:
        super().__init__(context)
        self._lower: Optional[BatchCursor] = None

    @classmethod
    def create(cls, context: Optional[IndexingContext]) -> Result["ResumableCursor"]:
        error = cls._check_context(context, "source", "sink")
        if error is not None:
            return Result.failure(error)
        assert context is not None
        cursor = cls(context)
        opened = cursor.reset(context)
        if not opened.ok:
            return Result.failure(opened.error)  # type: ignore[arg-type]
        context.metrics.cursor_opened(cls.layer)
        return Result.success(cursor)

    @property
    def lower(self) -> Optional[BatchCursor]:
        return self._lower

    def advance(self, last_seen: LogicalTimestamp) -> Result[Availability]:
        while True:
            cancelled = self._cancelled(last_seen)
            if cancelled is not None:
                return cancelled

            assert self._lower is not None
            res = self._lower.advance(last_seen)
            if not res.ok or not res.unwrap().is_perhaps:
                return res

            self.context.update_if_later(res.unwrap().latest_known)
            self.context.metrics.increment("batches_resumed")
            opened = self._open_batch()
            if not opened.ok:
                return Result.failure(opened.error)  # type: ignore[arg-type]
            last_seen = self.context.latest_seen

    def current(self) -> Result[Item]:
        if self._lower is None:
            return Result.failure(NotReady(layer=self.layer))
        return self._lower.current()

    def reset(self, context: IndexingContext) -> Result[None]:
        error = self._check_context(context, "source", "sink")
        if error is not None:
            return Result.failure(error)
        self.context = context
        return self._open_batch()

    def _open_batch(self) -> Result[None]:
        logger.debug("Batch being initialized at %s.", self.context.latest_seen)
        created = BatchCursor.create(self.context)
        if not created.ok:
            return Result.failure(created.error)  # type: ignore[arg-type]
        self._lower = created.unwrap()
        return Result.success(None)
