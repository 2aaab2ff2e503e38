"""Indexer library modules.

This package contains the cursor cascade, its value types and collaborator
contracts, and the configuration and logging utilities around them.
"""

from indexer.lib.context import IndexingContext
from indexer.lib.cursors import BatchCursor, ChunkCursor, Cursor, ResumableCursor
from indexer.lib.errors import (
    ConfigurationError,
    ConstructionFailure,
    IndexingError,
    NotReady,
    RunCancelled,
    SourceFailure,
)
from indexer.lib.job import (
    CursorStrategy,
    DryRunStrategy,
    IndexingJob,
    IndexingStrategy,
    JobResult,
    run_indexing,
)
from indexer.lib.models import Availability, AvailabilityStatus, Fetch, Item, LogicalTimestamp
from indexer.lib.observability import RunMetrics, setup_logging, setup_structlog
from indexer.lib.result import Result
from indexer.lib.settings import IndexingSettings, LoggingConfig, SourceConfig, load_settings
from indexer.lib.sink import Commit, IndexingSink, LoggingSink, MemorySink
from indexer.lib.source import DataSource, RandomDataSource, SequenceDataSource

__all__ = [
    # Models
    "Availability",
    "AvailabilityStatus",
    "Fetch",
    "Item",
    "LogicalTimestamp",
    "Result",
    # Collaborators
    "Commit",
    "DataSource",
    "IndexingSink",
    "LoggingSink",
    "MemorySink",
    "RandomDataSource",
    "SequenceDataSource",
    # Cascade
    "BatchCursor",
    "ChunkCursor",
    "Cursor",
    "IndexingContext",
    "ResumableCursor",
    # Job
    "CursorStrategy",
    "DryRunStrategy",
    "IndexingJob",
    "IndexingStrategy",
    "JobResult",
    "run_indexing",
    # Errors
    "ConfigurationError",
    "ConstructionFailure",
    "IndexingError",
    "NotReady",
    "RunCancelled",
    "SourceFailure",
    # Config / logging
    "IndexingSettings",
    "LoggingConfig",
    "RunMetrics",
    "SourceConfig",
    "load_settings",
    "setup_logging",
    "setup_structlog",
]
