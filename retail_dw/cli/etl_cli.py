"""
Command-line interface for warehouse loads.

Usage:
    retail-dw-etl run --mode incremental [options]
    retail-dw-etl run --mode full [options]
    retail-dw-etl init-schema [options]
    retail-dw-etl refresh-summary [--date YYYY-MM-DD] [options]
"""

import argparse
import sys
from datetime import date

from retail_dw.core.config import load_config
from retail_dw.core.errors import EtlError
from retail_dw.etl.pipeline import EtlPipeline
from retail_dw.observability.logger import get_logger
from retail_dw.observability.metrics import start_metrics_server
from retail_dw.warehouse.connection import DatabaseConnectionPool
from retail_dw.warehouse.postgres_store import PostgresWarehouseStore
from retail_dw.warehouse.schema_mgmt import SchemaManager
from retail_dw.warehouse.source import PostgresSourceReader

logger = get_logger(__name__)


def add_database_arguments(parser: argparse.ArgumentParser) -> None:
    """Connection flags; omitted values fall back to the DB_* environment variables."""
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME or retail_dw)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER or etl)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")


def create_pool(args) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )


def run_command(args):
    """
    Execute a full or incremental pipeline run.

    Args:
        args: Command-line arguments
    """
    config = load_config(args.config)
    if args.timeout is not None:
        config = config.model_copy(update={"timeout_seconds": args.timeout})

    if args.metrics_port:
        start_metrics_server(args.metrics_port)

    pool = create_pool(args)
    pool.open()

    try:
        pipeline = EtlPipeline(
            PostgresWarehouseStore(pool),
            PostgresSourceReader(pool, fetch_size=args.fetch_size),
            config,
        )
        if args.mode == "full":
            summary = pipeline.run_full_pipeline()
        else:
            summary = pipeline.run_incremental()

        print(summary.describe())

    except EtlError as e:
        logger.error(f"Pipeline run failed: {e}")
        if pipeline.last_summary is not None:
            print(pipeline.last_summary.describe())
        sys.exit(1)
    finally:
        pool.close()


def init_schema_command(args):
    """Create the warehouse tables."""
    pool = create_pool(args)
    pool.open()

    try:
        manager = SchemaManager(pool)
        manager.create_warehouse_schema()
        print("Warehouse tables: " + ", ".join(manager.existing_tables()))
    finally:
        pool.close()


def refresh_summary_command(args):
    """Rebuild the daily sales summary of one day."""
    day = date.fromisoformat(args.date) if args.date else None

    pool = create_pool(args)
    pool.open()

    try:
        pipeline = EtlPipeline(
            PostgresWarehouseStore(pool),
            PostgresSourceReader(pool),
            load_config(args.config),
        )
        result = pipeline.refresh_daily_summary(day)
        print(
            f"Daily summary refreshed: deleted={result.rows_deleted} "
            f"inserted={result.rows_inserted}"
        )
    except EtlError as e:
        logger.error(f"Summary refresh failed: {e}")
        sys.exit(1)
    finally:
        pool.close()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Retail warehouse ETL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Nightly checkpointed load
  retail-dw-etl run --mode incremental

  # Rebuild both dimensions and reload facts
  retail-dw-etl run --mode full --timeout 3600

  # Recompute yesterday's summary
  retail-dw-etl refresh-summary --date 2024-01-14
        """
    )
    add_database_arguments(parser)
    parser.add_argument(
        "--config",
        help="Path to the ETL configuration YAML (default: $ETL_CONFIG or config/etl_config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the pipeline")
    run_parser.add_argument(
        "--mode",
        default="incremental",
        choices=["full", "incremental"],
        help="Pipeline mode (default: incremental)"
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        help="Abort the run after this many seconds (overrides the config)"
    )
    run_parser.add_argument(
        "--fetch-size",
        type=int,
        default=1000,
        help="Rows fetched per round trip from the source tables (default: 1000)"
    )
    run_parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port while the run lasts"
    )

    subparsers.add_parser("init-schema", help="Create the warehouse tables")

    summary_parser = subparsers.add_parser(
        "refresh-summary",
        help="Rebuild the daily sales summary of one day"
    )
    summary_parser.add_argument(
        "--date",
        help="Day to rebuild as YYYY-MM-DD (default: today)"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "run":
            run_command(args)
        elif args.command == "init-schema":
            init_schema_command(args)
        elif args.command == "refresh-summary":
            refresh_summary_command(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
