"""
Command-line interface for incremental loads.

Usage:
    spotify-cdc run --tables config/tables.yaml [--watermarks state/watermarks.json] [options]
    spotify-cdc watermarks list [--watermarks state/watermarks.json]
    spotify-cdc watermarks reset --table silver.FactStream [--watermarks state/watermarks.json]
    spotify-cdc quarantine-stats [--table silver.FactStream]

Without --watermarks the cdc_watermark table of the warehouse is used.
"""

import argparse
import json
import os
import signal
import sys
from pathlib import Path

from pyspark.sql import SparkSession

from spotify_cdc.core.config import TableConfigLoader
from spotify_cdc.core.errors import CDCLoaderError, ConfigurationError
from spotify_cdc.core.models import format_cdc_value
from spotify_cdc.incremental.coordinator import LoadCoordinator
from spotify_cdc.incremental.readers.postgres_selector import PostgresChangeSelector
from spotify_cdc.incremental.readers.spark_selector import SparkChangeSelector
from spotify_cdc.incremental.run_lock import FileRunGuard, RunLock
from spotify_cdc.observability.logger import get_logger
from spotify_cdc.observability.metrics import start_metrics_server
from spotify_cdc.state.watermark_store import JsonFileWatermarkStore
from spotify_cdc.utils.validation import ValidationError, validate_file_path, validate_positive_int
from spotify_cdc.warehouse.advisory_lock import PostgresAdvisoryGuard
from spotify_cdc.warehouse.connection import DatabaseConnectionPool
from spotify_cdc.warehouse.quarantine import PostgresQuarantineWriter
from spotify_cdc.warehouse.upsert import PostgresWarehouseSink
from spotify_cdc.warehouse.watermarks import PostgresWatermarkStore

logger = get_logger(__name__)


def create_spark_session(app_name: str = "SpotifyCDC") -> SparkSession:
    """
    Create Spark session for reading the silver layer.

    The session runs in UTC so timestamps compare with stored watermarks.
    """
    spark = SparkSession.builder \
        .appName(app_name) \
        .config("spark.sql.session.timeZone", "UTC") \
        .config("spark.sql.adaptive.enabled", "true") \
        .getOrCreate()

    return spark


def create_pool(args, statement_timeout_seconds: float | None = None) -> DatabaseConnectionPool:
    """Build a connection pool from CLI arguments (environment fills the gaps)."""
    workers = getattr(args, "workers", 1)
    return DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
        max_size=max(10, 2 * workers + 2),
        statement_timeout_seconds=statement_timeout_seconds,
    )


def run_command(args) -> int:
    """
    Run one incremental cycle.

    Returns:
        Process exit code: 0 all tables loaded, 1 some table did not, 2 configuration error
    """
    try:
        workers = validate_positive_int(args.workers, "workers", max_value=64)
        batch_size = validate_positive_int(args.batch_size, "batch_size")
        tables = TableConfigLoader(validate_file_path(args.tables, "tables")).load_tables()
    except (ConfigurationError, ValidationError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    step_timeout = args.step_timeout or None
    try:
        pool = create_pool(args, statement_timeout_seconds=step_timeout)
    except ValueError as e:
        logger.error(str(e))
        return 2
    spark = None

    try:
        pool.open()

        if args.source == "spark":
            spark = create_spark_session()
            selector = SparkChangeSelector(
                spark, catalog=args.spark_catalog, snake_case_names=args.snake_case
            )
        else:
            selector = PostgresChangeSelector(pool)

        if args.watermarks:
            watermark_path = validate_file_path(args.watermarks, "watermarks")
            store = JsonFileWatermarkStore(watermark_path)
            guard = FileRunGuard(Path(watermark_path).resolve().parent)
        else:
            store = PostgresWatermarkStore(pool)
            guard = PostgresAdvisoryGuard(pool)

        quarantine = None if args.no_quarantine else PostgresQuarantineWriter(pool)
        if args.dry_run:
            logger.info("DRY RUN MODE: merges are rolled back, watermarks are not persisted")
            store = store.snapshot()
            quarantine = None
            guard = None

        coordinator = LoadCoordinator(
            selector,
            PostgresWarehouseSink(pool, dry_run=args.dry_run),
            store,
            max_workers=workers,
            batch_size=batch_size,
            step_timeout_seconds=step_timeout,
            quarantine=quarantine,
            run_lock=RunLock(guard=guard),
        )
        signal.signal(signal.SIGINT, lambda signum, frame: coordinator.cancel())

        if args.metrics_port:
            start_metrics_server(args.metrics_port)

        result = coordinator.run_cycle(tables)
        print(json.dumps(result.summary(), indent=2, default=str))
        return 0 if result.succeeded else 1

    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except CDCLoaderError as e:
        logger.error(f"Cycle not started: {e}")
        return 1
    finally:
        pool.close()
        if spark is not None:
            spark.stop()


def _watermark_store(args, pool_holder: list):
    if args.watermarks:
        return JsonFileWatermarkStore(validate_file_path(args.watermarks, "watermarks"))
    pool = create_pool(args)
    pool.open()
    pool_holder.append(pool)
    return PostgresWatermarkStore(pool)


def watermarks_command(args) -> int:
    """List or reset stored watermarks."""
    pools: list[DatabaseConnectionPool] = []
    try:
        store = _watermark_store(args, pools)

        if args.action == "list":
            watermarks = store.all()
            if not watermarks:
                print("No watermarks stored; the next cycle performs a full load.")
                return 0
            print(f"\n{'TABLE':<30} {'WATERMARK':<34} LAST SUCCESS")
            print("-" * 90)
            for table_id, watermark in sorted(watermarks.items()):
                print(
                    f"{table_id:<30} {str(format_cdc_value(watermark.value)):<34} "
                    f"{watermark.last_success_at.isoformat() if watermark.last_success_at else '-'}"
                )
            return 0

        if store.reset(args.table):
            print(f"Watermark for {args.table} removed; it will be reloaded in full next cycle.")
        else:
            print(f"No watermark stored for {args.table}.")
        return 0

    except (ConfigurationError, ValidationError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    finally:
        for pool in pools:
            pool.close()


def quarantine_stats_command(args) -> int:
    """Print quarantine statistics."""
    with create_pool(args) as pool:
        stats = PostgresQuarantineWriter(pool).get_quarantine_stats(args.table)

    print(f"\n{'=' * 50}")
    print("QUARANTINE STATISTICS" + (f" FOR {args.table}" if args.table else ""))
    print(f"{'=' * 50}")
    print(f"Total quarantined:  {stats.get('total_quarantined', 0)}")
    print(f"Unreviewed:         {stats.get('unreviewed', 0)}")
    print(f"Missing reference:  {stats.get('missing_reference', 0)}")
    return 0


def _add_db_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db-host", default=None, help="Database host (default: $WAREHOUSE_DB_HOST)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (default: $WAREHOUSE_DB_PORT)")
    parser.add_argument("--db-name", default=None, help="Database name (default: $WAREHOUSE_DB_NAME)")
    parser.add_argument("--db-user", default=None, help="Database user (default: $WAREHOUSE_DB_USER)")
    parser.add_argument(
        "--db-password", default=None, help="Database password (default: $WAREHOUSE_DB_PASSWORD)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spotify-cdc",
        description="Incremental CDC loader for the Spotify star schema",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load every configured table, watermarks in a JSON file
  spotify-cdc run --tables config/tables.yaml --watermarks state/watermarks.json

  # Read the silver layer through Spark, 8 workers, 10 minute step timeout
  spotify-cdc run --tables config/tables.yaml --source spark --workers 8 --step-timeout 600

  # See what a cycle would do without writing anything
  spotify-cdc run --tables config/tables.yaml --dry-run

  # Replay FactStream from scratch on the next cycle
  spotify-cdc watermarks reset --table silver.FactStream --watermarks state/watermarks.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run one incremental load cycle")
    run_parser.add_argument("--tables", required=True, help="Table configuration (YAML or JSON)")
    run_parser.add_argument(
        "--watermarks",
        default=None,
        help="Watermark JSON file (default: cdc_watermark table in the warehouse)"
    )
    run_parser.add_argument(
        "--source",
        default="postgres",
        choices=["postgres", "spark"],
        help="Where source tables are read from (default: postgres)"
    )
    run_parser.add_argument("--spark-catalog", default=None, help="Catalog prefix for Spark tables")
    run_parser.add_argument(
        "--snake-case",
        action="store_true",
        help="Resolve Spark tables as snake_case (DimUser -> dim_user)"
    )
    run_parser.add_argument(
        "--workers",
        type=int,
        default=int(os.getenv("CDC_MAX_WORKERS", "4")),
        help="Tables loaded in parallel (default: $CDC_MAX_WORKERS or 4)"
    )
    run_parser.add_argument(
        "--batch-size",
        type=int,
        default=int(os.getenv("CDC_BATCH_SIZE", "1000")),
        help="Change rows merged per chunk (default: $CDC_BATCH_SIZE or 1000)"
    )
    run_parser.add_argument(
        "--step-timeout",
        type=float,
        default=float(os.getenv("CDC_STEP_TIMEOUT", "0")),
        help="Seconds allowed per table select+merge, 0 for no limit (default: $CDC_STEP_TIMEOUT)"
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Roll back every merge and keep watermarks unchanged"
    )
    run_parser.add_argument(
        "--no-quarantine",
        action="store_true",
        help="Report rejected rows without writing them to cdc_quarantine"
    )
    run_parser.add_argument("--metrics-port", type=int, default=None, help="Expose Prometheus metrics")
    _add_db_arguments(run_parser)

    # Watermarks command
    wm_parser = subparsers.add_parser("watermarks", help="Inspect or reset watermarks")
    wm_parser.add_argument("action", choices=["list", "reset"])
    wm_parser.add_argument("--table", help="Table id to reset, e.g. silver.DimUser")
    wm_parser.add_argument("--watermarks", default=None, help="Watermark JSON file")
    _add_db_arguments(wm_parser)

    # Quarantine stats command
    q_parser = subparsers.add_parser("quarantine-stats", help="Show quarantined row counts")
    q_parser.add_argument("--table", default=None, help="Filter by table id")
    _add_db_arguments(q_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "run":
        return run_command(args)
    if args.command == "watermarks":
        if args.action == "reset" and not args.table:
            parser.error("watermarks reset requires --table")
        return watermarks_command(args)
    if args.command == "quarantine-stats":
        return quarantine_stats_command(args)
    return 1


if __name__ == "__main__":
    sys.exit(main())
