"""Operator CLI for the catalog migration engine.

Usage:
    catalog-migration plan
    catalog-migration run --concurrency 3
    catalog-migration run --at 2026-01-01T03:00:00+00:00
    catalog-migration retry-failed
    catalog-migration status
    catalog-migration export results --output results.csv

During a run, `kill -USR1 <pid>` toggles pause and `kill -USR2 <pid>` resumes.
"""
import argparse
import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import structlog

from catalog_migration.config import configure_logging, settings
from catalog_migration.engine import MigrationEngine, MigrationPlan, create_engine
from catalog_migration.errors.exceptions import InvalidScheduleError, MigrationEngineError
from catalog_migration.models.batch import BatchProgress
from catalog_migration.services.csv_export import export_filename
from catalog_migration.services.scheduler import MAX_CONCURRENCY, MIN_CONCURRENCY
from catalog_migration.services.scheduling_gate import parse_when

logger = structlog.get_logger(__name__)


def _concurrency(value: str) -> int:
    number = int(value)
    if not MIN_CONCURRENCY <= number <= MAX_CONCURRENCY:
        raise argparse.ArgumentTypeError(
            f"must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}"
        )
    return number


def _when(value: str) -> datetime:
    try:
        return parse_when(value)
    except InvalidScheduleError as e:
        raise argparse.ArgumentTypeError(e.message) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-migration",
        description="Copy items missing on the destination marketplace from the source marketplace",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # What would be migrated
  catalog-migration plan

  # Migrate now with 5 concurrent items
  catalog-migration run --concurrency 5

  # Migrate at 3am UTC
  catalog-migration run --at 2026-01-01T03:00:00+00:00
        """,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("plan", help="Compare catalogs and list missing items")

    run = subcommands.add_parser("run", help="Migrate every missing item")
    run.add_argument("--concurrency", type=_concurrency, default=None, help="Concurrent items (1-5)")
    run.add_argument("--at", type=_when, default=None, help="ISO-8601 start time; runs now if omitted or past")

    retry = subcommands.add_parser("retry-failed", help="Re-run only the failed-item queue")
    retry.add_argument("--concurrency", type=_concurrency, default=None, help="Concurrent items (1-5)")

    subcommands.add_parser("status", help="Show persisted results and queue sizes")

    export = subcommands.add_parser("export", help="Write results or audit log as CSV")
    export.add_argument("kind", choices=["results", "audit"])
    export.add_argument("--output", type=Path, default=None, help="Target file (default: timestamped name)")

    return parser


def print_plan(plan: MigrationPlan) -> None:
    print("\n" + "=" * 60)
    print("Migration Plan")
    print("=" * 60)
    print(f"  Source items:       {plan.source_count:>6}")
    print(f"  Destination items:  {plan.destination_count:>6}")
    print(f"  Missing:            {len(plan.missing):>6}")
    print(f"  Price mismatches:   {len(plan.price_mismatches):>6}")
    print(f"  Near duplicates:    {len(plan.near_duplicates):>6}")
    print("=" * 60)

    for item in plan.missing[:20]:
        print(f"  + #{item.id:<8} {item.name}")
    if len(plan.missing) > 20:
        print(f"  ... and {len(plan.missing) - 20} more")

    for mismatch in plan.price_mismatches[:10]:
        print(
            f"  ~ #{mismatch.source_item.id:<8} {mismatch.source_item.name}: "
            f"{mismatch.source_item.price} vs {mismatch.destination_price_in_source_units}"
        )
    for duplicate in plan.near_duplicates[:10]:
        print(
            f"  ? #{duplicate.source_item.id:<8} {duplicate.source_item.name} "
            f"~ {duplicate.destination_item.title} ({duplicate.score:.0f})"
        )

    if not plan.eligible:
        print("⚠️  Source catalog is too small for bulk migration")
    elif not plan.missing:
        print("✅ Nothing to migrate")


def print_progress(progress: BatchProgress) -> None:
    state = "paused" if progress.is_paused else ("running" if progress.is_processing else "done")
    print(
        f"\r[{state:>7}] {progress.completed}/{progress.total} "
        f"({progress.progress_percentage:5.1f}%) ok={progress.succeeded} "
        f"failed={progress.failed} active={progress.active}",
        end="",
        flush=True,
    )


def print_summary(progress: BatchProgress) -> None:
    print()
    print("=" * 60)
    print(
        f"Batch {progress.batch_id}: {progress.succeeded} succeeded, "
        f"{progress.failed} failed in {progress.elapsed_ms / 1000:.1f}s"
    )
    for error in progress.errors:
        print(f"  ❌ #{error.item_id} {error.name}: {error.error}")
    print("=" * 60)


def print_status(engine: MigrationEngine) -> None:
    status = engine.status()
    print("\n" + "=" * 60)
    print("Migration Status")
    print("=" * 60)
    print(f"  Results recorded:   {status.results_count:>6}")
    print(f"  Succeeded:          {status.succeeded_count:>6}")
    print(f"  Errors:             {status.error_count:>6}")
    print(f"  Failed-item queue:  {status.failed_queue_size:>6}")
    print(f"  Audit entries:      {status.audit_entries:>6}")
    print("=" * 60)
    for record in engine.results.items()[:10]:
        mark = "✅" if record.status == "success" else "❌"
        print(f"  {mark} {record.timestamp:%Y-%m-%d %H:%M:%S} #{record.id} {record.name} {record.error or ''}")


def install_pause_signals(engine: MigrationEngine) -> None:
    """SIGUSR1 toggles pause, SIGUSR2 resumes (where the platform has them)."""
    loop = asyncio.get_running_loop()
    handlers = {"SIGUSR1": engine.toggle_pause, "SIGUSR2": engine.resume}
    for name, handler in handlers.items():
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            loop.add_signal_handler(signum, handler)
        except NotImplementedError:
            logger.warning("signal_handler_unsupported", signal=name)


async def run_command(args: argparse.Namespace) -> int:
    progress_callback = print_progress if args.command in ("run", "retry-failed") else None

    async with create_engine(on_progress=progress_callback) as engine:
        if args.command == "plan":
            print_plan(await engine.plan())
            return 0

        if args.command == "status":
            print_status(engine)
            return 0

        if args.command == "export":
            content = engine.export_results() if args.kind == "results" else engine.export_audit()
            output = args.output or Path(export_filename(args.kind))
            output.write_text(content, encoding="utf-8", newline="")
            print(f"✅ Wrote {output}")
            return 0

        install_pause_signals(engine)

        if args.command == "retry-failed":
            print_summary(await engine.retry_failed(args.concurrency))
            return 0

        if args.at:
            deferred = await engine.schedule_batch(args.at, args.concurrency)
            if not deferred:
                print_summary(engine.last_progress)
                return 0
            print(f"⏳ Batch scheduled for {engine.gate.scheduled_for:%Y-%m-%d %H:%M:%S %Z}")
            progress = await engine.wait_for_schedule()
        else:
            progress = await engine.run_batch(args.concurrency)

        if progress is not None:
            print_summary(progress)
        return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or settings.log_level)

    try:
        return asyncio.run(run_command(args))
    except MigrationEngineError as e:
        logger.error("command_failed", command=args.command, error=e.message, **e.details)
        print(f"❌ {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\nStopped.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
