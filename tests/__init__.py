"""Indexer test suite.

- unit/test_models.py: value types and Result
- unit/test_errors.py: error taxonomy
- unit/test_sources.py: reference data sources and sinks
- unit/test_chunk_cursor.py, test_batch_cursor.py, test_resumable_cursor.py: cursor cascade
- unit/test_job.py: job runner and strategies
- unit/test_settings.py, test_observability.py, test_cli.py: configuration, logging, CLI
"""
