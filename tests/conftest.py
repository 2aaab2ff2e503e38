"""Pytest configuration and fixtures for indexer tests."""

import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from indexer.lib.context import IndexingContext  # noqa: E402
from indexer.lib.models import LogicalTimestamp  # noqa: E402
from indexer.lib.sink import IndexingSink, MemorySink  # noqa: E402
from indexer.lib.source import DataSource, SequenceDataSource  # noqa: E402


@pytest.fixture
def memory_sink() -> MemorySink:
    """Sink that records every item and commit."""
    return MemorySink()


@pytest.fixture
def dense_source() -> SequenceDataSource:
    """Source with an item at every timestamp 1..81."""
    return SequenceDataSource.from_timestamps(range(1, 82))


@pytest.fixture
def make_context(memory_sink: MemorySink) -> Callable[..., IndexingContext]:
    """Factory building a context around a source, defaulting to the memory sink."""

    def _make(
        source: Optional[DataSource],
        sink: Optional[IndexingSink] = None,
        *,
        chunk_size: int = 10,
        batch_size: int = 18,
        start_at: int = 0,
        use_sink: bool = True,
    ) -> IndexingContext:
        if sink is None and use_sink:
            sink = memory_sink
        return IndexingContext(
            source,
            sink,
            chunk_size=chunk_size,
            batch_size=batch_size,
            latest_seen=LogicalTimestamp(start_at),
        )

    return _make
