"""
Shared FastAPI dependencies: storage, services and the requested date range.

Tests swap storage by overriding get_store.
"""

from datetime import date, datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Query, status

from botmetrics.adapters.sqlalchemy_store import SQLAlchemyAnalyticsStore
from botmetrics.core.config import settings
from botmetrics.core.database import AsyncSessionLocal
from botmetrics.services.calculator import InvalidDateRangeError, MetricsCalculator, validate_range
from botmetrics.services.recorder import EventRecorder
from botmetrics.services.rollup import RollupEngine


def get_store() -> SQLAlchemyAnalyticsStore:
    return SQLAlchemyAnalyticsStore(AsyncSessionLocal)


def get_recorder(store: SQLAlchemyAnalyticsStore = Depends(get_store)) -> EventRecorder:
    return EventRecorder(store)


def get_rollup(store: SQLAlchemyAnalyticsStore = Depends(get_store)) -> RollupEngine:
    return RollupEngine(store)


def get_calculator(store: SQLAlchemyAnalyticsStore = Depends(get_store)) -> MetricsCalculator:
    return MetricsCalculator(store)


class DateRange:
    def __init__(self, start: date, end: date):
        self.start = start
        self.end = end


def get_date_range(
    start: date | None = Query(default=None, description="First day, inclusive (UTC)"),
    end: date | None = Query(default=None, description="Last day, inclusive (UTC)"),
) -> DateRange:
    """Defaults to the last DEFAULT_RANGE_DAYS days ending today."""
    if end is None:
        end = datetime.now(timezone.utc).date()
    if start is None:
        start = end - timedelta(days=settings.DEFAULT_RANGE_DAYS - 1)
    try:
        validate_range(start, end)
    except InvalidDateRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return DateRange(start, end)
