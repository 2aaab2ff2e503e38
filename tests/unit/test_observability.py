from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from indexer.lib.context import IndexingContext
from indexer.lib.job import IndexingJob
from indexer.lib.observability import (
    JSONFormatter,
    RunMetrics,
    get_structlog_logger,
    setup_logging,
    setup_structlog,
)
from indexer.lib.sink import MemorySink
from indexer.lib.source import SequenceDataSource


@pytest.fixture
def restore_logging():
    """Put root handlers and structlog back the way they were."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("indexer.test", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_renders_record() -> None:
    payload = json.loads(JSONFormatter().format(_record("hello")))
    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "indexer.test"
    assert payload["origin"] == "test_observability:10"
    assert "extra" not in payload


def test_json_formatter_lifts_run_fields() -> None:
    formatter = JSONFormatter(exclude_fields=["secret"])
    payload = json.loads(
        formatter.format(_record("hi", watermark=20, layer="batch", commits=2, secret="x"))
    )
    assert payload["watermark"] == 20
    assert payload["layer"] == "batch"
    assert payload["extra"] == {"commits": 2}


def test_run_metrics_counts_and_phases() -> None:
    metrics = RunMetrics("nightly")
    metrics.increment("commits")
    metrics.increment("items_fetched", 10)
    metrics.cursor_opened("chunk")
    metrics.cursor_opened("chunk")
    with metrics.time_phase("index"):
        pass

    summary = metrics.summary()
    assert summary["run"] == "nightly"
    assert summary["counters"] == {"commits": 1, "items_fetched": 10}
    assert summary["cursors_opened"] == {"chunk": 2}
    assert "index" in summary["timing"]["phases"]
    assert metrics.get("missing") == 0


def test_run_metrics_log_dict_is_flat() -> None:
    metrics = RunMetrics()
    metrics.increment("fetches", 3)
    metrics.cursor_opened("batch")
    flat = metrics.to_log_dict()
    assert flat["metric_fetches"] == 3
    assert flat["cursors_batch"] == 1
    assert all(not isinstance(v, dict) for v in flat.values())


def test_finish_freezes_duration() -> None:
    metrics = RunMetrics()
    metrics.finish()
    first = metrics.total_duration
    assert metrics.total_duration == first


def test_setup_logging_writes_json_file(tmp_path: Path, restore_logging) -> None:
    log_path = tmp_path / "indexer.log"
    setup_logging(level="debug", json_format=True, log_file=str(log_path))

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert all(isinstance(h.formatter, JSONFormatter) for h in root.handlers)

    logging.getLogger("indexer.test").info("hello file")
    for handler in root.handlers:
        handler.flush()
    records = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert any(record["message"] == "hello file" for record in records)


def test_structlog_json_events_carry_fields(tmp_path: Path, restore_logging) -> None:
    log_path = tmp_path / "events.log"
    setup_structlog(json_format=True, log_file=str(log_path))

    get_structlog_logger("indexer.test").info("job_completed", items=81, watermark=81)
    for handler in logging.getLogger().handlers:
        handler.flush()

    records = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    event = next(r for r in records if r["message"] == "job_completed")
    assert event["watermark"] == 81
    assert event["extra"] == {"items": 81}


def test_begin_run_sets_baseline() -> None:
    metrics = RunMetrics()
    metrics.increment("commits", 5)
    metrics.cursor_opened("batch")
    with metrics.time_phase("index"):
        pass

    metrics.begin_run()
    metrics.increment("commits")

    summary = metrics.summary()
    assert summary["counters"] == {"commits": 1}
    assert summary["totals"] == {"commits": 6}
    assert summary["cursors_opened"] == {}
    assert metrics.phases == []


def test_setup_logging_honours_configured_level(tmp_path: Path, restore_logging) -> None:
    log_path = tmp_path / "quiet.log"
    setup_logging(level="WARNING", log_file=str(log_path))

    logging.getLogger("indexer.test").info("not written")
    logging.getLogger("indexer.test").warning("written")
    for handler in logging.getLogger().handlers:
        handler.flush()

    contents = log_path.read_text(encoding="utf-8")
    assert "written" in contents
    assert "not written" not in contents


def test_setup_logging_rejects_unknown_level(restore_logging) -> None:
    with pytest.raises(ValueError, match="LOUD"):
        setup_logging(level="loud")


def test_rejected_commit_log_carries_layer(tmp_path: Path, restore_logging) -> None:
    class RefusingSink(MemorySink):
        def commit(self, at, count_since_last_commit):
            return False

    log_path = tmp_path / "run.log"
    setup_logging(json_format=True, log_file=str(log_path))
    context = IndexingContext(SequenceDataSource.from_timestamps([1, 2, 3]), RefusingSink())
    IndexingJob(context).run()
    for handler in logging.getLogger().handlers:
        handler.flush()

    records = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    warning = next(r for r in records if r["level"] == "WARNING")
    assert warning["layer"] == "batch"
    assert warning["watermark"] == 3
