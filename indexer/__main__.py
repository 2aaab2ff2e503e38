"""CLI entry point for running the indexer against the simulated source.

Usage:
    python -m indexer run
    python -m indexer run --chunk-size 10 --batch-size 18 --available 81
    python -m indexer run --config ./indexer.yaml --seed 7 --json-log
    python -m indexer run --dry-run
    python -m indexer config --config ./indexer.yaml
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from typing import Any, List, Optional

from dotenv import load_dotenv

from indexer.lib.context import IndexingContext
from indexer.lib.errors import ConfigurationError
from indexer.lib.job import CursorStrategy, DryRunStrategy, IndexingJob, JobResult
from indexer.lib.models import LogicalTimestamp
from indexer.lib.observability import RunMetrics, setup_structlog
from indexer.lib.settings import IndexingSettings, load_settings
from indexer.lib.sink import LoggingSink
from indexer.lib.source import RandomDataSource

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="watermark-indexer",
        description="Run the chunked, batch-committing indexing cursor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with defaults (81 items, chunks of 10, commit every 18)
    python -m indexer run

    # Sparse source: drop roughly 60% of timestamps, reproducibly
    python -m indexer run --acceptance 60 --seed 7

    # Show the resolved configuration
    python -m indexer config --config ./indexer.yaml
        """,
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=["run", "config"],
        help="'run' indexes the simulated source, 'config' prints resolved settings",
    )
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--env-file", help=".env file to load before reading settings")
    parser.add_argument("--chunk-size", type=int, help="Items requested per fetch")
    parser.add_argument("--batch-size", type=int, help="Commit threshold")
    parser.add_argument("--start-at", type=int, help="Starting watermark")
    parser.add_argument("--available", type=int, help="Total timestamps the simulated source serves")
    parser.add_argument("--acceptance", type=int, help="Filter threshold 0..100 for the simulated source")
    parser.add_argument("--seed", type=int, help="Random seed for the simulated source")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Build the cursor cascade without pulling any items",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument("--log-file", help="Write logs to a file in addition to console")
    return parser


def resolve_settings(args: argparse.Namespace) -> IndexingSettings:
    """Merge CLI flags over the config file and environment."""
    if args.env_file:
        if not load_dotenv(args.env_file):
            raise ConfigurationError(
                f"Env file not found or empty: {args.env_file}",
                field="env_file",
                value=args.env_file,
            )

    logging_overrides: dict = {"file": args.log_file}
    if args.verbose:
        logging_overrides["level"] = "DEBUG"
    if args.json_log:
        logging_overrides["format"] = "json"

    return load_settings(
        args.config,
        chunk_size=args.chunk_size,
        batch_size=args.batch_size,
        start_at=args.start_at,
        source={
            "globally_available": args.available,
            "acceptance_threshold": args.acceptance,
            "seed": args.seed,
        },
        logging=logging_overrides,
    )


def run_from_settings(settings: IndexingSettings, *, dry_run: bool = False) -> JobResult:
    """Wire the simulated source and logging sink into a job and run it.

    SIGINT during the run cancels it at the next cursor loop iteration.
    """
    source = RandomDataSource(
        globally_available=settings.source.globally_available,
        acceptance_threshold=settings.source.acceptance_threshold,
        seed=settings.source.seed,
    )
    sink = LoggingSink()
    context = IndexingContext(
        source,
        sink,
        chunk_size=settings.chunk_size,
        batch_size=settings.batch_size,
        latest_seen=LogicalTimestamp(settings.start_at),
        metrics=RunMetrics("indexing"),
    )
    strategy = DryRunStrategy() if dry_run else CursorStrategy()
    job = IndexingJob(context, strategy)

    def _cancel(signum: int, frame: Any) -> None:
        context.cancel()

    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        result = job.run()
    finally:
        signal.signal(signal.SIGINT, previous)
        sink.close()
    return result


def print_result(result: JobResult) -> None:
    """Print a human-readable run summary."""
    print()
    print("=" * 60)
    status = "SUCCESS" if result.success else "FAILED"
    print(f"Indexing run {status}")
    print("=" * 60)
    print(f"  Items processed: {result.items_processed}")
    print(f"  Commits:         {result.commits}")
    print(f"  Watermark:       {result.watermark}")
    print(f"  Elapsed:         {result.elapsed_seconds:.2f}s")

    cursors = result.metrics.get("cursors_opened", {})
    if cursors:
        opened = ", ".join(f"{layer}={count}" for layer, count in sorted(cursors.items()))
        print(f"  Cursors opened:  {opened}")

    if result.error is not None:
        print()
        print(f"Error: {result.error}")


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "config":
        print(json.dumps(settings.model_dump(), indent=2))
        return

    setup_structlog(
        level=settings.logging.level,
        json_format=settings.logging.json_format,
        log_file=settings.logging.file,
    )
    logger.info(
        "Running indexer (chunk_size=%d, batch_size=%d, start_at=%d)",
        settings.chunk_size,
        settings.batch_size,
        settings.start_at,
    )

    result = run_from_settings(settings, dry_run=args.dry_run)
    print_result(result)

    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
