"""Incremental, watermark-driven indexing cursor.

Pulls records from a data source in chunks, groups them into commit-sized
batches and feeds them to an indexing sink.

Usage:
    python -m indexer run
    python -m indexer run --acceptance 60 --seed 7
"""

from indexer.lib.context import IndexingContext
from indexer.lib.job import IndexingJob, JobResult, run_indexing
from indexer.lib.models import Item, LogicalTimestamp

__version__ = "1.0.0"

__all__ = [
    "IndexingContext",
    "IndexingJob",
    "Item",
    "JobResult",
    "LogicalTimestamp",
    "run_indexing",
]
