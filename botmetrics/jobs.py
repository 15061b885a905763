"""Command line entry point for the scheduled analytics jobs.

Meant to be run from cron (or a Kubernetes CronJob):
- daily: aggregate yesterday (or --date) for every active tenant, then purge
- hourly: aggregate the last full hour (or --hour) for every active tenant
- cleanup: purge raw events and hourly aggregates past retention

A tenant that fails is logged and reported but does not fail the run; the
exit code is non-zero only when the job as a whole cannot run.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date, datetime

from botmetrics.adapters.sqlalchemy_store import SQLAlchemyAnalyticsStore
from botmetrics.core.database import AsyncSessionLocal, engine, init_db
from botmetrics.core.logging import get_logger, job_context, setup_logging
from botmetrics.domain import BatchReport
from botmetrics.services.retention import run_retention
from botmetrics.services.rollup import RollupEngine

logger = get_logger(__name__)


def _print_report(label: str, report: BatchReport) -> None:
    print(f"=== {label} {report.period} ===")
    print(f"Tenants succeeded: {len(report.succeeded)}")
    print(f"Tenants failed: {len(report.failed)}")
    print(f"Channels aggregated: {report.channels_aggregated}")
    for tenant_id in report.failed:
        print(f"  failed: {tenant_id}")


def _print_cleanup(result: dict[str, int]) -> None:
    print(f"Raw events deleted: {result['events_deleted']}")
    print(f"Hourly aggregates deleted: {result['hourly_deleted']}")


async def _run_daily(day: date | None, skip_cleanup: bool, store=None) -> BatchReport:
    store = store or SQLAlchemyAnalyticsStore(AsyncSessionLocal)
    rollup = RollupEngine(store)
    if day is None:
        report = await rollup.aggregate_yesterday_for_all_tenants()
    else:
        report = await rollup.aggregate_day_for_all_tenants(day)
    _print_report("Daily rollup", report)

    if not skip_cleanup:
        _print_cleanup(await run_retention(store))
    return report


async def _run_hourly(hour: datetime | None, store=None) -> BatchReport:
    rollup = RollupEngine(store or SQLAlchemyAnalyticsStore(AsyncSessionLocal))
    if hour is None:
        report = await rollup.aggregate_last_hour_for_all_tenants()
    else:
        report = await rollup.aggregate_hour_for_all_tenants(hour)
    _print_report("Hourly rollup", report)
    return report


async def _run_cleanup(store=None) -> dict[str, int]:
    result = await run_retention(store or SQLAlchemyAnalyticsStore(AsyncSessionLocal))
    _print_cleanup(result)
    return result


async def _with_database(coro):
    try:
        await init_db()
        return await coro
    finally:
        await engine.dispose()


def cmd_daily(args: argparse.Namespace) -> int:
    """Handle 'daily' - roll up one UTC day for every tenant."""
    day = getattr(args, "date", None)
    skip_cleanup = getattr(args, "skip_cleanup", False)
    with job_context("daily"):
        try:
            asyncio.run(_with_database(_run_daily(day, skip_cleanup)))
        except Exception as e:
            logger.error("jobs.daily_failed", error=str(e), exc_info=True)
            print(f"Error running daily rollup: {e}", file=sys.stderr)
            return 1
    return 0


def cmd_hourly(args: argparse.Namespace) -> int:
    """Handle 'hourly' - roll up one UTC hour for every tenant."""
    hour = getattr(args, "hour", None)
    with job_context("hourly"):
        try:
            asyncio.run(_with_database(_run_hourly(hour)))
        except Exception as e:
            logger.error("jobs.hourly_failed", error=str(e), exc_info=True)
            print(f"Error running hourly rollup: {e}", file=sys.stderr)
            return 1
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Handle 'cleanup' - apply the retention horizons."""
    with job_context("cleanup"):
        try:
            asyncio.run(_with_database(_run_cleanup()))
        except Exception as e:
            logger.error("jobs.cleanup_failed", error=str(e), exc_info=True)
            print(f"Error running cleanup: {e}", file=sys.stderr)
            return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="botmetrics-jobs",
        description="Scheduled analytics rollup and retention jobs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    daily = subparsers.add_parser("daily", help="Aggregate one day for all tenants")
    daily.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="UTC day as YYYY-MM-DD (default: yesterday)",
    )
    daily.add_argument(
        "--skip-cleanup",
        action="store_true",
        help="Do not run retention after the rollup",
    )
    daily.set_defaults(func=cmd_daily)

    hourly = subparsers.add_parser("hourly", help="Aggregate one hour for all tenants")
    hourly.add_argument(
        "--hour",
        type=datetime.fromisoformat,
        default=None,
        help="Any ISO timestamp inside the hour (default: last full hour)",
    )
    hourly.set_defaults(func=cmd_hourly)

    cleanup = subparsers.add_parser("cleanup", help="Purge data past retention")
    cleanup.set_defaults(func=cmd_cleanup)

    return parser


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
