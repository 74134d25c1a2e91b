"""
Admin CLI for monitoring and repairing warehouse loads.

Usage:
    retail-dw-admin job-status [--limit N] [--status running|completed|failed]
    retail-dw-admin checkpoints
    retail-dw-admin stale-runs [--older-than-minutes N]
    retail-dw-admin resolve-run --run-id <id> [--message <text>]
    retail-dw-admin reset-checkpoint --source <source_name> --yes
"""

import argparse
import sys
from datetime import datetime, timedelta

from retail_dw.cli.etl_cli import add_database_arguments, create_pool
from retail_dw.core.config import load_config
from retail_dw.core.errors import JobStateError
from retail_dw.etl.checkpoint import CheckpointStore
from retail_dw.etl.job_tracker import JobTracker
from retail_dw.observability.logger import get_logger
from retail_dw.warehouse.postgres_store import PostgresWarehouseStore
from retail_dw.warehouse.source import SOURCE_TABLES

logger = get_logger(__name__)


def format_timestamp(ts: datetime | None) -> str:
    """Format timestamp for display."""
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def print_runs(runs) -> None:
    print(f"{'Run':>6} {'Job':<34} {'Status':<10} {'Started':<20} {'Secs':>8} "
          f"{'Proc':>7} {'Ins':>7} {'Upd':>7}")
    print(f"{'-' * 106}")
    for run in runs:
        duration = run.duration_seconds
        print(
            f"{run.run_id:>6} {run.job_name:<34} {run.status:<10} "
            f"{format_timestamp(run.start_time):<20} "
            f"{(f'{duration:.1f}' if duration is not None else '-'):>8} "
            f"{run.rows_processed:>7} {run.rows_inserted:>7} {run.rows_updated:>7}"
        )
        if run.error_message:
            print(f"{'':>7}error: {run.error_message}")


def job_status_command(args, store: PostgresWarehouseStore):
    """Show the most recent job runs."""
    runs = JobTracker(store).recent_runs(limit=args.limit, status=args.status)
    if not runs:
        print("\nNo job runs recorded.")
        return

    print(f"\n{'=' * 106}")
    print("RECENT JOB RUNS")
    print(f"{'=' * 106}\n")
    print_runs(runs)
    print()


def checkpoints_command(args, store: PostgresWarehouseStore):
    """Show the extraction checkpoint of every source."""
    rows = CheckpointStore(store).list()
    if not rows:
        print("\nNo checkpoints recorded; the next run extracts everything.")
        return

    print(f"\n{'Source':<12} {'Last id':>10} {'Last extracted':<20} {'Last run':<20} {'Hours ago':>9}")
    print(f"{'-' * 76}")
    for row in rows:
        last_id = row["last_extracted_id"]
        print(
            f"{row['source_name']:<12} {(last_id if last_id is not None else '-'):>10} "
            f"{format_timestamp(row['last_extracted_timestamp']):<20} "
            f"{format_timestamp(row['last_run_time']):<20} "
            f"{row['hours_since_last_run']:>9}"
        )
    print()


def stale_runs_command(args, store: PostgresWarehouseStore):
    """List runs stuck in "running" past the expected duration."""
    minutes = args.older_than_minutes or load_config(args.config).stale_run_minutes
    runs = JobTracker(store).stale_runs(timedelta(minutes=minutes))
    if not runs:
        print(f"\nNo runs have been running for more than {minutes} minutes.")
        return

    print(f"\n{len(runs)} stale run(s) older than {minutes} minutes:\n")
    print_runs(runs)
    print("\nResolve with: retail-dw-admin resolve-run --run-id <id>")


def resolve_run_command(args, store: PostgresWarehouseStore):
    """Mark an abandoned run as failed."""
    try:
        run = JobTracker(store).resolve_stale(args.run_id, args.message)
    except JobStateError as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except KeyError:
        print(f"\nNo job run found with ID: {args.run_id}")
        sys.exit(1)

    print(f"\nRun {run.run_id} ({run.job_name}) marked failed: {run.error_message}")


def reset_checkpoint_command(args, store: PostgresWarehouseStore):
    """Delete a checkpoint so the next run re-extracts the source."""
    if not args.yes:
        print(f"\nRefusing to reset '{args.source}' without --yes.")
        sys.exit(1)

    if CheckpointStore(store).reset(args.source):
        print(f"\nCheckpoint for '{args.source}' removed.")
    else:
        print(f"\nNo checkpoint found for '{args.source}'.")


COMMANDS = {
    "job-status": job_status_command,
    "checkpoints": checkpoints_command,
    "stale-runs": stale_runs_command,
    "resolve-run": resolve_run_command,
    "reset-checkpoint": reset_checkpoint_command,
}


def main():
    """Main entry point for admin CLI."""
    parser = argparse.ArgumentParser(
        description="Admin CLI for the retail warehouse ETL",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    add_database_arguments(parser)
    parser.add_argument(
        "--config",
        help="Path to the ETL configuration YAML (default: $ETL_CONFIG or config/etl_config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("job-status", help="Show recent job runs")
    status_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of runs to display (default: 20)"
    )
    status_parser.add_argument(
        "--status",
        choices=["running", "completed", "failed"],
        help="Filter by status (optional)"
    )

    subparsers.add_parser("checkpoints", help="Show extraction checkpoints")

    stale_parser = subparsers.add_parser("stale-runs", help="List runs stuck in running")
    stale_parser.add_argument(
        "--older-than-minutes",
        type=int,
        help="Age threshold (default: stale_run_minutes from the config)"
    )

    resolve_parser = subparsers.add_parser("resolve-run", help="Mark an abandoned run failed")
    resolve_parser.add_argument(
        "--run-id",
        type=int,
        required=True,
        help="Run ID to resolve"
    )
    resolve_parser.add_argument(
        "--message",
        default="Marked failed by operator",
        help="Error message recorded on the run"
    )

    reset_parser = subparsers.add_parser(
        "reset-checkpoint",
        help="Delete a checkpoint so the source is re-extracted from the beginning"
    )
    reset_parser.add_argument(
        "--source",
        required=True,
        choices=list(SOURCE_TABLES),
        help="Source name"
    )
    reset_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm the reset"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    pool = create_pool(args)
    try:
        pool.open()
        COMMANDS[args.command](args, PostgresWarehouseStore(pool))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    finally:
        pool.close()


if __name__ == "__main__":
    main()
