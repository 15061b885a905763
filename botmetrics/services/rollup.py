"""
Rollup engine — turns raw events into hourly and daily aggregates.

Every rollup recomputes its window from raw events and overwrites the row for
its (scope, period) key, so re-running a rollup is always safe. Batch drivers
walk tenants one at a time; one tenant failing never stops the others.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Sequence

import structlog

from botmetrics.core.logging import get_logger
from botmetrics.domain import (
    ADDITIVE_DAILY_FIELDS,
    COST_BEARING_KINDS,
    BatchReport,
    DailyAggregate,
    Event,
    EventKind,
    Grain,
    HourlyAggregate,
    Scope,
)
from botmetrics.ports import AnalyticsStore
from botmetrics.services.stats import mean_ms, percentile, round_half_up

logger = get_logger(__name__)

# Storage precision for monetary sums.
COST_DIGITS = 6

_DAILY_COUNTERS = {
    EventKind.MESSAGE_IN: "messages_in",
    EventKind.MESSAGE_OUT: "messages_out",
    EventKind.CONVERSATION_START: "conversations_started",
    EventKind.CONVERSATION_END: "conversations_ended",
    EventKind.HANDOFF_REQUESTED: "handoff_requests",
    EventKind.HANDOFF_COMPLETED: "handoff_completed",
    EventKind.ERROR: "error_count",
    EventKind.FEEDBACK_POSITIVE: "feedback_positive",
    EventKind.FEEDBACK_NEGATIVE: "feedback_negative",
}

_HOURLY_COUNTERS = {
    EventKind.MESSAGE_IN: "messages_in",
    EventKind.MESSAGE_OUT: "messages_out",
    EventKind.ERROR: "error_count",
}

_MESSAGE_KINDS = frozenset({EventKind.MESSAGE_IN, EventKind.MESSAGE_OUT})


def day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def hour_start(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def _latency(event: Event) -> Optional[int]:
    if event.kind != EventKind.MESSAGE_OUT or event.response_time_ms is None:
        return None
    if event.response_time_ms < 0:
        return None
    return event.response_time_ms


# ── Pure computations ──────────────────────────────────────────────────────────
def compute_daily(scope: Scope, day: date, events: Sequence[Event]) -> Optional[DailyAggregate]:
    """Build the full daily aggregate for ``events``; None when there are none."""
    if not events:
        return None

    row = DailyAggregate(scope=scope, day=date(day.year, day.month, day.day))
    latencies: list[int] = []
    cost = 0.0
    users: set[str] = set()
    messages_by_hour: dict[int, int] = {}

    for event in events:
        counter = _DAILY_COUNTERS.get(event.kind)
        if counter:
            setattr(row, counter, getattr(row, counter) + 1)

        latency = _latency(event)
        if latency is not None:
            latencies.append(latency)

        if event.kind in COST_BEARING_KINDS:
            row.tokens_in += event.tokens_in or 0
            row.tokens_out += event.tokens_out or 0
            cost += event.cost or 0.0

        if event.user_id:
            users.add(event.user_id)

        if event.kind in _MESSAGE_KINDS:
            hour = event.occurred_at.astimezone(timezone.utc).hour
            messages_by_hour[hour] = messages_by_hour.get(hour, 0) + 1

    latencies.sort()
    row.avg_response_time_ms = mean_ms(latencies)
    row.p50_response_time_ms = percentile(latencies, 50)
    row.p95_response_time_ms = percentile(latencies, 95)
    row.p99_response_time_ms = percentile(latencies, 99)

    row.cost = round_half_up(cost, COST_DIGITS)
    row.unique_users = len(users)

    # Ascending hour order + strict comparison: ties go to the earliest hour.
    for hour in sorted(messages_by_hour):
        count = messages_by_hour[hour]
        if row.peak_hour_messages is None or count > row.peak_hour_messages:
            row.peak_hour = hour
            row.peak_hour_messages = count

    return row


def compute_hourly(scope: Scope, hour: datetime, events: Sequence[Event]) -> Optional[HourlyAggregate]:
    """Build the hourly aggregate; None when the hour had no messages or errors."""
    row = HourlyAggregate(scope=scope, hour=hour_start(hour))
    latencies: list[int] = []
    cost = 0.0

    for event in events:
        counter = _HOURLY_COUNTERS.get(event.kind)
        if counter:
            setattr(row, counter, getattr(row, counter) + 1)
        latency = _latency(event)
        if latency is not None:
            latencies.append(latency)
        if event.kind in COST_BEARING_KINDS:
            cost += event.cost or 0.0

    if row.messages_in == 0 and row.messages_out == 0 and row.error_count == 0:
        return None

    row.avg_response_time_ms = mean_ms(latencies)
    row.cost = round_half_up(cost, COST_DIGITS)
    return row


# ── Engine ─────────────────────────────────────────────────────────────────────
class RollupEngine:
    def __init__(self, store: AnalyticsStore):
        self.store = store

    async def aggregate_daily(
        self,
        tenant_id: str,
        day: date,
        workspace_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> Optional[DailyAggregate]:
        return await self._rollup_day(Scope(tenant_id, workspace_id, channel_id), day)

    async def aggregate_hourly(
        self,
        tenant_id: str,
        hour: datetime,
        workspace_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> Optional[HourlyAggregate]:
        return await self._rollup_hour(Scope(tenant_id, workspace_id, channel_id), hour)

    async def _rollup_day(self, scope: Scope, day: date) -> Optional[DailyAggregate]:
        start = day_start(day)
        events = await self.store.query_events(scope, start, start + timedelta(days=1))

        row = compute_daily(scope, day, events)
        if row is None:
            logger.debug("rollup.daily_skipped", scope=scope.key, day=start.date().isoformat())
            return None

        await self.store.upsert_daily(row)
        logger.info(
            "rollup.daily_completed",
            scope=scope.key,
            day=row.day.isoformat(),
            events=len(events),
        )
        return row

    async def _rollup_hour(self, scope: Scope, hour: datetime) -> Optional[HourlyAggregate]:
        start = hour_start(hour)
        events = await self.store.query_events(scope, start, start + timedelta(hours=1))

        row = compute_hourly(scope, start, events)
        if row is None:
            return None

        await self.store.upsert_hourly(row)
        logger.debug("rollup.hourly_completed", scope=scope.key, hour=start.isoformat())
        return row

    async def check_daily_consistency(self, tenant_id: str, day: date) -> list[str]:
        """Return counters where channel rows add up to more than the tenant row.

        The tenant-level row may legitimately exceed the channel sum (events
        without a channel), never the other way around.
        """
        rows = await self.store.query_daily(tenant_id, day, day, grain=None)
        tenant_row = next((r for r in rows if r.scope.grain == Grain.TENANT), None)
        channel_rows = [r for r in rows if r.scope.grain == Grain.CHANNEL]
        if not channel_rows:
            return []

        mismatched = []
        for name in ADDITIVE_DAILY_FIELDS:
            channel_total = sum(getattr(r, name) for r in channel_rows)
            tenant_total = getattr(tenant_row, name) if tenant_row else 0
            if channel_total > tenant_total:
                mismatched.append(name)
        return mismatched

    # ── Batch drivers ──────────────────────────────────────────────────────────
    async def _rollup_tenant_day(self, tenant_id: str, day: date) -> int:
        channels = await self.store.list_channels(tenant_id)
        for channel in channels:
            await self._rollup_day(channel.scope, day)
        await self._rollup_day(Scope(tenant_id), day)

        mismatched = await self.check_daily_consistency(tenant_id, day)
        if mismatched:
            logger.warning("rollup.consistency_mismatch", day=day.isoformat(), fields=mismatched)
        return len(channels)

    async def _rollup_tenant_hour(self, tenant_id: str, hour: datetime) -> int:
        channels = await self.store.list_channels(tenant_id)
        for channel in channels:
            await self._rollup_hour(channel.scope, hour)
        await self._rollup_hour(Scope(tenant_id), hour)
        return len(channels)

    async def aggregate_day_for_all_tenants(self, day: date) -> BatchReport:
        day = date(day.year, day.month, day.day)
        tenants = await self.store.list_active_tenants()
        report = BatchReport(period=day.isoformat())
        logger.info("rollup.batch_started", tier="daily", day=report.period, tenants=len(tenants))

        # Tenants run one after another, never concurrently.
        for tenant in tenants:
            with structlog.contextvars.bound_contextvars(tenant_id=tenant.id):
                try:
                    channels = await self._rollup_tenant_day(tenant.id, day)
                except Exception as e:
                    logger.error(
                        "rollup.tenant_failed",
                        tenant_name=tenant.name,
                        day=report.period,
                        error=str(e),
                        exc_info=True,
                    )
                    report.failed.append(tenant.id)
                    continue

                report.succeeded.append(tenant.id)
                report.channels_aggregated += channels
                logger.info("rollup.tenant_completed", tenant_name=tenant.name, channels=channels)

        logger.info(
            "rollup.batch_completed",
            tier="daily",
            day=report.period,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report

    async def aggregate_yesterday_for_all_tenants(
        self, now: Optional[datetime] = None
    ) -> BatchReport:
        now = now or datetime.now(timezone.utc)
        yesterday = now.astimezone(timezone.utc).date() - timedelta(days=1)
        return await self.aggregate_day_for_all_tenants(yesterday)

    async def aggregate_hour_for_all_tenants(self, hour: datetime) -> BatchReport:
        start = hour_start(hour)
        tenants = await self.store.list_active_tenants()
        report = BatchReport(period=start.isoformat())
        logger.info("rollup.batch_started", tier="hourly", hour=report.period, tenants=len(tenants))

        for tenant in tenants:
            with structlog.contextvars.bound_contextvars(tenant_id=tenant.id):
                try:
                    channels = await self._rollup_tenant_hour(tenant.id, start)
                except Exception as e:
                    logger.error(
                        "rollup.tenant_failed",
                        tenant_name=tenant.name,
                        hour=report.period,
                        error=str(e),
                        exc_info=True,
                    )
                    report.failed.append(tenant.id)
                    continue

                report.succeeded.append(tenant.id)
                report.channels_aggregated += channels

        logger.info(
            "rollup.batch_completed",
            tier="hourly",
            hour=report.period,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report

    async def aggregate_last_hour_for_all_tenants(
        self, now: Optional[datetime] = None
    ) -> BatchReport:
        now = now or datetime.now(timezone.utc)
        return await self.aggregate_hour_for_all_tenants(hour_start(now) - timedelta(hours=1))
