"""Observability utilities for indexing runs.

Combines run metrics with logging setup so an indexing run can emit both
operational counters and JSON-friendly logs from the same module.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

import structlog

logger = logging.getLogger(__name__)

__all__ = [
    "PhaseTimer",
    "RunMetrics",
    "JSONFormatter",
    "get_structlog_logger",
    "setup_logging",
    "setup_structlog",
]


@dataclass
class PhaseTimer:
    """Monotonic timer for one named phase (``setup``, ``index``) of a job run."""

    name: str
    started: float = field(default_factory=time.perf_counter)
    stopped: Optional[float] = None

    def stop(self) -> float:
        if self.stopped is None:
            self.stopped = time.perf_counter()
        return self.duration

    @property
    def duration(self) -> float:
        end = time.perf_counter() if self.stopped is None else self.stopped
        return end - self.started


class RunMetrics:
    """Counters and timings for the runs made against one context.

    Cursors report fetches, commits and their own construction here, which
    replaces ad-hoc object lifecycle counters with a per-run record. Counters
    accumulate over the context's life; ``begin_run`` restarts the timing and
    sets the baseline that ``summary`` reports the current run against.
    """

    def __init__(self, name: str = "indexing") -> None:
        self.name = name
        self.counters: Counter = Counter()
        self.cursors_opened: Counter = Counter()
        self._start_time = time.time()
        self._end_time: Optional[float] = None
        self._phases: List[PhaseTimer] = []
        self._baseline: Counter = Counter()
        self._cursors_baseline: Counter = Counter()

    def begin_run(self) -> None:
        """Start timing a new run; counters so far become its baseline."""
        self._start_time = time.time()
        self._end_time = None
        self._phases = []
        self._baseline = Counter(self.counters)
        self._cursors_baseline = Counter(self.cursors_opened)

    @contextmanager
    def time_phase(self, name: str) -> Generator[PhaseTimer, None, None]:
        """Context manager that tracks a phase duration."""
        timer = PhaseTimer(name=name)
        self._phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()

    def increment(self, name: str, amount: int = 1) -> None:
        self.counters[name] += amount

    def cursor_opened(self, layer: str) -> None:
        self.cursors_opened[layer] += 1

    def get(self, name: str) -> int:
        return self.counters[name]

    def run_counters(self) -> Dict[str, int]:
        """Counters incremented since the last ``begin_run``."""
        return dict(self.counters - self._baseline)

    def finish(self) -> None:
        """Mark the run as complete."""
        if self._end_time is None:
            self._end_time = time.time()

    @property
    def phases(self) -> List[PhaseTimer]:
        return list(self._phases)

    @property
    def total_duration(self) -> float:
        end = self._end_time or time.time()
        return end - self._start_time

    def summary(self) -> Dict[str, Any]:
        """Return a summary dictionary of the tracked metrics."""
        self.finish()

        return {
            "run": self.name,
            "timing": {
                "total_seconds": round(self.total_duration, 3),
                "phases": {p.name: round(p.duration, 3) for p in self._phases},
            },
            "counters": self.run_counters(),
            "cursors_opened": dict(self.cursors_opened - self._cursors_baseline),
            "totals": dict(self.counters),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten metrics for structured logging."""
        result: Dict[str, Any] = {
            "run": self.name,
            "total_duration_seconds": round(self.total_duration, 3),
        }
        for phase in self._phases:
            result[f"phase_{phase.name}_seconds"] = round(phase.duration, 3)
        for key, value in sorted(self.run_counters().items()):
            result[f"metric_{key}"] = value
        for layer, value in sorted((self.cursors_opened - self._cursors_baseline).items()):
            result[f"cursors_{layer}"] = value
        return result


# LogRecord attributes that are not caller-supplied extras
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line.

    Run fields (``job``, ``layer``, ``watermark``) passed as extras are lifted
    to top-level keys so indexing runs can be filtered on them; any other
    extras are nested under ``extra``.
    """

    run_fields = ("job", "layer", "watermark")

    def __init__(self, exclude_fields: Optional[List[str]] = None):
        super().__init__()
        self.exclude_fields = set(exclude_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "origin": f"{record.module}:{record.lineno}",
        }

        extras = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _RECORD_ATTRS and k not in self.exclude_fields
        }
        for name in self.run_fields:
            if name in extras:
                payload[name] = extras.pop(name)
        if extras:
            payload["extra"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Route all log output through fresh root handlers.

    Args:
        level: Level name as validated by ``LoggingConfig`` (``DEBUG`` ... ``CRITICAL``)
        json_format: Emit one JSON object per line instead of console text
        log_file: Also append to this file
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level.upper()}")

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)


def setup_structlog(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure structlog on top of the stdlib handlers from setup_logging.

    JSON output hands event fields to the stdlib record as extras so that
    JSONFormatter lifts the run fields and nests the rest; console output
    renders key=value pairs.
    """
    setup_logging(level=level, json_format=json_format, log_file=log_file)

    final_processor = (
        structlog.stdlib.render_to_log_kwargs
        if json_format
        else structlog.processors.KeyValueRenderer(key_order=["event"])
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.format_exc_info,
            final_processor,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_structlog_logger(name: str) -> Any:
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
