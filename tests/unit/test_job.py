"""Unit tests for IndexingJob, its strategies and run_indexing."""

import logging

import pytest

from indexer.lib.context import IndexingContext
from indexer.lib.cursors import ResumableCursor
from indexer.lib.errors import ConstructionFailure, RunCancelled, SourceFailure
from indexer.lib.job import (
    CursorStrategy,
    DryRunStrategy,
    IndexingJob,
    JobResult,
    run_indexing,
)
from indexer.lib.models import Fetch, Item, LogicalTimestamp
from indexer.lib.result import Result
from indexer.lib.sink import Commit, MemorySink
from indexer.lib.source import DataSource, RandomDataSource, SequenceDataSource


class FlakySource(SequenceDataSource):
    """Sequence source that fails once it is asked past ``fail_after``."""

    def __init__(self, fail_after, **kwargs):
        super().__init__([Item(LogicalTimestamp(ts)) for ts in range(1, 51)], **kwargs)
        self.fail_after = fail_after

    def retrieve(self, last_seen, count):
        if last_seen.value >= self.fail_after:
            self.retrieve_calls.append(last_seen)
            return Result.failure(SourceFailure("quota exceeded", last_seen=last_seen.value))
        return super().retrieve(last_seen, count)


class ExplodingSink(MemorySink):
    def commit(self, at, count_since_last_commit):
        raise RuntimeError("disk full")


class CancellingSink(MemorySink):
    """Sink that cancels the run after indexing ``limit`` items."""

    def __init__(self, limit):
        super().__init__()
        self.limit = limit
        self.context = None

    def index(self, item):
        super().index(item)
        if len(self.items) == self.limit:
            self.context.cancel()
        return True


class StalledSource(DataSource):
    """Source that never moves past the watermark and never reports exhausted."""

    def __init__(self):
        self.calls = []

    def globally_available(self):
        return 1000

    def retrieve(self, last_seen, count):
        self.calls.append(last_seen)
        return Result.success(Fetch(latest_known=last_seen))


class PickySink(MemorySink):
    """Sink that refuses items with even timestamps."""

    def index(self, item):
        super().index(item)
        return item.produced_at.value % 2 == 1


class TestIndexingJob:
    """Tests for the job run loop."""

    def test_default_example_run(self, make_context, dense_source, memory_sink):
        context = make_context(dense_source)
        result = IndexingJob(context).run()

        assert result.success
        assert result.items_processed == 81
        assert result.watermark == LogicalTimestamp(81)
        assert result.commits == 5
        assert memory_sink.commits[-1] == Commit(LogicalTimestamp(81), 1)
        assert result.error is None

    def test_random_source_matches_dense_run(self, make_context, memory_sink):
        source = RandomDataSource(globally_available=81, acceptance_threshold=0, seed=1)
        result = IndexingJob(make_context(source)).run()

        assert result.items_processed == 81
        assert memory_sink.indexed_timestamps == list(range(1, 82))

    def test_commit_counts_cover_every_item(self, make_context, memory_sink):
        source = RandomDataSource(globally_available=250, acceptance_threshold=60, seed=42)
        result = IndexingJob(make_context(source, chunk_size=6, batch_size=10)).run()

        assert result.success
        assert sum(c.count for c in memory_sink.commits) == result.items_processed
        assert len(set(memory_sink.indexed_timestamps)) == result.items_processed

    def test_source_failure_fails_run_without_retry(self, make_context, memory_sink):
        source = FlakySource(fail_after=20, horizon=50)
        result = IndexingJob(make_context(source)).run()

        assert not result.success
        assert isinstance(result.error, SourceFailure)
        assert result.watermark == LogicalTimestamp(20)
        assert source.retrieve_calls.count(LogicalTimestamp(20)) == 1
        assert memory_sink.indexed_timestamps == list(range(1, 21))

    def test_missing_sink_fails_before_fetching(self, make_context, dense_source):
        context = make_context(dense_source, use_sink=False)
        result = IndexingJob(context).run()

        assert not result.success
        assert isinstance(result.error, ConstructionFailure)
        assert dense_source.retrieve_calls == []

    def test_sink_exception_is_caught_by_job(self, make_context, dense_source, caplog):
        context = make_context(dense_source, ExplodingSink())
        with caplog.at_level(logging.ERROR, logger="indexer.lib.job"):
            result = IndexingJob(context).run()

        assert not result.success
        assert isinstance(result.error, RuntimeError)
        assert "disk full" in caplog.text

    def test_rejected_items_do_not_stop_run(self, make_context, dense_source):
        context = make_context(dense_source, PickySink())
        result = IndexingJob(context).run()

        assert result.success
        assert result.items_processed == 81
        assert context.metrics.get("index_failures") == 40
        assert context.metrics.get("items_indexed") == 41

    def test_cancellation_ends_run(self, make_context, dense_source):
        sink = CancellingSink(limit=5)
        context = make_context(dense_source, sink)
        sink.context = context

        result = IndexingJob(context).run()

        assert not result.success
        assert isinstance(result.error, RunCancelled)
        assert result.items_processed == 5
        assert result.watermark == LogicalTimestamp(5)

    def test_metrics_summary_is_attached(self, make_context, dense_source):
        result = IndexingJob(make_context(dense_source), name="nightly").run()

        assert result.job_name == "nightly"
        assert result.metrics["counters"]["fetches"] == 9
        assert set(result.metrics["timing"]["phases"]) == {"setup", "index"}

    def test_to_dict(self, make_context, dense_source):
        data = IndexingJob(make_context(dense_source)).run().to_dict()
        assert data["success"] is True
        assert data["watermark"] == 81
        assert data["error"] is None

    def test_failed_to_dict_is_structured(self, make_context, dense_source):
        data = IndexingJob(make_context(dense_source, use_sink=False)).run().to_dict()
        assert data["error"]["error_type"] == "ConstructionFailure"


class TestReusedContext:
    """Several jobs resuming on one context each report their own run."""

    def test_second_run_reports_only_its_own_work(self, make_context, dense_source, memory_sink):
        context = make_context(dense_source)

        first = IndexingJob(context).run()
        second = IndexingJob(context).run()

        assert first.items_processed == 81
        assert first.commits == 5
        assert second.success
        assert second.items_processed == 0
        assert second.commits == 1
        assert memory_sink.commits[-1] == Commit(LogicalTimestamp(81), 0)
        assert second.metrics["totals"]["items_processed"] == 81
        assert second.metrics["cursors_opened"] == {"resumable": 1, "batch": 1, "chunk": 1}

    def test_each_run_has_its_own_phases(self, make_context, dense_source):
        context = make_context(dense_source)
        IndexingJob(context).run()
        second = IndexingJob(context).run()

        assert set(second.metrics["timing"]["phases"]) == {"setup", "index"}
        assert [phase.name for phase in context.metrics.phases] == ["setup", "index"]
        assert second.metrics["timing"]["total_seconds"] <= second.elapsed_seconds + 0.01

    def test_failed_run_counts_items_since_start(self, make_context):
        source = FlakySource(fail_after=20, horizon=50)
        context = make_context(SequenceDataSource.from_timestamps(range(1, 6)))
        IndexingJob(context).run()

        context.source = source
        result = IndexingJob(context).run()

        assert not result.success
        assert result.items_processed == 20
        assert result.watermark == LogicalTimestamp(25)


class TestStalledSource:
    def test_stalled_source_ends_run_with_single_empty_commit(self, make_context, memory_sink):
        source = StalledSource()
        context = make_context(source, start_at=12)

        result = IndexingJob(context).run()

        assert result.success
        assert result.items_processed == 0
        assert source.calls == [LogicalTimestamp(12)]
        assert memory_sink.commits == [Commit(LogicalTimestamp(12), 0)]
        assert result.watermark == LogicalTimestamp(12)

    def test_stalled_source_answers_no_at_top(self, make_context):
        source = StalledSource()
        context = make_context(source)
        cursor = ResumableCursor.create(context).unwrap()

        assert cursor.advance(context.latest_seen).unwrap().is_no
        assert len(source.calls) == 1


class TestStrategies:
    """Tests for the pluggable processing strategies."""

    def test_dry_run_builds_cascade_only(self, make_context, dense_source, memory_sink):
        strategy = DryRunStrategy()
        result = IndexingJob(make_context(dense_source), strategy).run()

        assert result.success
        assert result.items_processed == 0
        assert strategy.cursor is not None
        assert dense_source.retrieve_calls == []
        assert memory_sink.commits == []

    def test_dry_run_reports_construction_failure(self, make_context):
        result = IndexingJob(make_context(None), DryRunStrategy()).run()
        assert isinstance(result.error, ConstructionFailure)

    def test_run_before_reset_fails(self):
        res = CursorStrategy().run()
        assert isinstance(res.error, ConstructionFailure)

    def test_process_before_reset_fails(self):
        res = CursorStrategy().process(Item(LogicalTimestamp(1)))
        assert isinstance(res.error, ConstructionFailure)

    def test_process_moves_watermark(self, make_context, dense_source, memory_sink):
        context = make_context(dense_source)
        strategy = CursorStrategy()
        strategy.reset(context)

        assert strategy.process(Item(LogicalTimestamp(9))).unwrap() is True
        assert context.latest_seen == LogicalTimestamp(9)
        assert memory_sink.indexed_timestamps == [9]


class TestRunIndexing:
    def test_run_indexing(self, memory_sink):
        source = SequenceDataSource.from_timestamps([1, 5, 8], horizon=10)
        result = run_indexing(source, memory_sink, chunk_size=3, batch_size=4)

        assert isinstance(result, JobResult)
        assert result.success
        assert memory_sink.indexed_timestamps == [1, 5, 8]

    def test_run_indexing_start_at(self, memory_sink):
        result = run_indexing(SequenceDataSource.from_timestamps(range(1, 11)), memory_sink, start_at=8)
        assert memory_sink.indexed_timestamps == [9, 10]
        assert result.watermark == LogicalTimestamp(10)

    def test_run_indexing_dry_run(self, memory_sink):
        source = SequenceDataSource.from_timestamps([1])
        result = run_indexing(source, memory_sink, dry_run=True)
        assert result.success
        assert source.retrieve_calls == []

    def test_invalid_sizes_are_rejected(self, memory_sink):
        with pytest.raises(ValueError, match="chunk_size"):
            IndexingContext(SequenceDataSource.from_timestamps([1]), memory_sink, chunk_size=0)
