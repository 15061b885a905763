"""
Retention manager — purges raw events and hourly aggregates past their horizon.

Daily aggregates are the durable history and are never purged here. Re-running
a cleanup is harmless: the second pass finds nothing older than the cutoff.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from botmetrics.core.config import settings
from botmetrics.core.logging import get_logger
from botmetrics.ports import AggregateWriter, EventWriter

logger = get_logger(__name__)


def _cutoff(retention_days: int, now: Optional[datetime]) -> datetime:
    if retention_days < 0:
        raise ValueError("retention_days cannot be negative")
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=retention_days)


async def cleanup_events(
    store: EventWriter,
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    if retention_days is None:
        retention_days = settings.RAW_EVENTS_RETENTION_DAYS
    cutoff = _cutoff(retention_days, now)
    deleted = await store.delete_events_before(cutoff)
    logger.info(
        "retention.events_purged",
        deleted=deleted,
        retention_days=retention_days,
        cutoff=cutoff.isoformat(),
    )
    return deleted


async def cleanup_hourly_aggregates(
    store: AggregateWriter,
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    if retention_days is None:
        retention_days = settings.HOURLY_RETENTION_DAYS
    cutoff = _cutoff(retention_days, now)
    deleted = await store.delete_hourly_before(cutoff)
    logger.info(
        "retention.hourly_purged",
        deleted=deleted,
        retention_days=retention_days,
        cutoff=cutoff.isoformat(),
    )
    return deleted


async def run_retention(store, now: Optional[datetime] = None) -> dict[str, int]:
    """Apply both configured horizons. ``store`` must implement both writer ports."""
    return {
        "events_deleted": await cleanup_events(store, now=now),
        "hourly_deleted": await cleanup_hourly_aggregates(store, now=now),
    }
