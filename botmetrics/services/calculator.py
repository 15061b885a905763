"""
Metrics calculator — derives dashboard metrics from the aggregate tiers.

Reads daily aggregates (and hourly ones for the peak-hour histogram). The only
raw-event read is the cost-by-model breakdown, which is bounded to a short
trailing window because model granularity is not kept in the aggregates.
All operations are side-effect free.
"""

import csv
import io
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Sequence

from botmetrics.core.config import settings
from botmetrics.core.logging import get_logger
from botmetrics.domain import DailyAggregate, Grain
from botmetrics.ports import AnalyticsStore
from botmetrics.schemas.metrics import (
    ChannelBreakdownRow,
    ChannelCost,
    ChannelSummary,
    ConversationTotals,
    CostBreakdown,
    Costs,
    MessageTotals,
    ModelCost,
    OverviewMetrics,
    PeakHourBucket,
    Performance,
    Period,
    Satisfaction,
    TrendPoint,
    UsageSummary,
)
from botmetrics.services.rollup import day_start
from botmetrics.services.stats import growth_percent, percentage, round_half_up, weighted_average

logger = get_logger(__name__)

CSV_COLUMNS = [
    "date",
    "workspace_id",
    "channel_id",
    "messages_in",
    "messages_out",
    "conversations_started",
    "conversations_ended",
    "handoff_requests",
    "handoff_completed",
    "error_count",
    "feedback_positive",
    "feedback_negative",
    "avg_response_time_ms",
    "p50_response_time_ms",
    "p95_response_time_ms",
    "p99_response_time_ms",
    "tokens_in",
    "tokens_out",
    "cost_usd",
    "unique_users",
    "peak_hour",
    "peak_hour_messages",
]

_SUMMED_FIELDS = (
    "messages_in",
    "messages_out",
    "conversations_started",
    "conversations_ended",
    "handoff_requests",
    "error_count",
    "feedback_positive",
    "feedback_negative",
    "tokens_in",
    "tokens_out",
    "cost",
    "unique_users",
)


class InvalidDateRangeError(ValueError):
    pass


def inclusive_days(start: date, end: date) -> int:
    return (end - start).days + 1


def validate_range(start: date, end: date, max_days: Optional[int] = None) -> None:
    if start > end:
        raise InvalidDateRangeError("start date cannot be after end date")
    if max_days is not None and inclusive_days(start, end) > max_days:
        raise InvalidDateRangeError(f"date range cannot exceed {max_days} days")


def _totals(rows: Sequence[DailyAggregate]) -> dict:
    totals = {name: 0 for name in _SUMMED_FIELDS}
    for row in rows:
        for name in _SUMMED_FIELDS:
            totals[name] += getattr(row, name)
    return totals


def _weighted_response_time(rows: Sequence[DailyAggregate]) -> Optional[int]:
    avg = weighted_average((row.avg_response_time_ms, row.messages_out) for row in rows)
    return None if avg is None else int(round_half_up(avg))


def _cell(value) -> str:
    return "" if value is None else str(value)


class MetricsCalculator:
    def __init__(
        self,
        store: AnalyticsStore,
        human_cost_per_message: Optional[float] = None,
        cost_by_model_window_days: Optional[int] = None,
        currency: Optional[str] = None,
    ):
        self.store = store
        self.human_cost_per_message = (
            settings.HUMAN_COST_PER_MESSAGE if human_cost_per_message is None else human_cost_per_message
        )
        self.cost_by_model_window_days = cost_by_model_window_days or settings.COST_BY_MODEL_WINDOW_DAYS
        self.currency = currency or settings.CURRENCY

    async def get_overview(self, tenant_id: str, start: date, end: date) -> OverviewMetrics:
        validate_range(start, end)
        rows = await self.store.query_daily(tenant_id, start, end, grain=Grain.TENANT)
        totals = _totals(rows)

        # Percentiles do not average across days; take the latest day that has them.
        latest = next((r for r in reversed(rows) if r.p50_response_time_ms is not None), None)

        days = inclusive_days(start, end)
        previous_rows = await self.store.query_daily(
            tenant_id,
            start - timedelta(days=days),
            start - timedelta(days=1),
            grain=Grain.TENANT,
        )
        previous_total = sum(r.messages_in + r.messages_out for r in previous_rows)

        total_messages = totals["messages_in"] + totals["messages_out"]
        started = totals["conversations_started"]
        feedback_total = totals["feedback_positive"] + totals["feedback_negative"]

        resolution_rate = percentage(started - totals["handoff_requests"], started, default=100.0)
        error_rate = percentage(totals["error_count"], total_messages, default=0.0)
        satisfaction = percentage(totals["feedback_positive"], feedback_total, default=None)

        channels = await self.store.list_channels(tenant_id)
        by_type: dict[str, int] = {}
        for channel in channels:
            by_type[channel.type] = by_type.get(channel.type, 0) + 1

        return OverviewMetrics(
            period=Period(start=start, end=end),
            messages=MessageTotals(
                total=total_messages,
                incoming=totals["messages_in"],
                outgoing=totals["messages_out"],
                growth=round_half_up(growth_percent(total_messages, previous_total), 1),
            ),
            conversations=ConversationTotals(
                started=started,
                ended=totals["conversations_ended"],
                ongoing=started - totals["conversations_ended"],
            ),
            channels=ChannelSummary(
                total=len(channels),
                active=sum(1 for c in channels if c.status == "CONNECTED"),
                by_type=by_type,
            ),
            performance=Performance(
                avg_response_time_ms=_weighted_response_time(rows),
                p50_response_time_ms=latest.p50_response_time_ms if latest else None,
                p95_response_time_ms=latest.p95_response_time_ms if latest else None,
                p99_response_time_ms=latest.p99_response_time_ms if latest else None,
                resolution_rate=round_half_up(resolution_rate, 1),
                error_rate=round_half_up(error_rate, 2),
            ),
            costs=Costs(
                total=round_half_up(totals["cost"], 2),
                tokens_in=totals["tokens_in"],
                tokens_out=totals["tokens_out"],
                currency=self.currency,
                per_message=(
                    round_half_up(totals["cost"] / total_messages, 4) if total_messages else None
                ),
            ),
            satisfaction=Satisfaction(
                positive=totals["feedback_positive"],
                negative=totals["feedback_negative"],
                score=None if satisfaction is None else int(round_half_up(satisfaction)),
            ),
            unique_users=totals["unique_users"],
        )

    async def get_trends(
        self,
        tenant_id: str,
        start: date,
        end: date,
        channel_id: Optional[str] = None,
    ) -> list[TrendPoint]:
        """One point per day that has an aggregate; missing days are not filled."""
        validate_range(start, end)
        rows = await self.store.query_daily(
            tenant_id, start, end, grain=Grain.TENANT, channel_id=channel_id
        )
        return [
            TrendPoint(
                date=row.day,
                messages_in=row.messages_in,
                messages_out=row.messages_out,
                cost=row.cost,
                avg_response_time_ms=row.avg_response_time_ms,
                unique_users=row.unique_users,
            )
            for row in rows
        ]

    async def get_channel_breakdown(
        self, tenant_id: str, start: date, end: date
    ) -> list[ChannelBreakdownRow]:
        validate_range(start, end)
        rows = await self.store.query_daily(tenant_id, start, end, grain=Grain.CHANNEL)

        by_channel: dict[str, list[DailyAggregate]] = {}
        for row in rows:
            by_channel.setdefault(row.scope.channel_id, []).append(row)

        directory = {c.id: c for c in await self.store.list_channels(tenant_id)}
        grand_total = sum(r.messages_in + r.messages_out for r in rows)

        result = []
        for channel_id, channel_rows in by_channel.items():
            channel = directory.get(channel_id)
            messages_in = sum(r.messages_in for r in channel_rows)
            messages_out = sum(r.messages_out for r in channel_rows)
            share = percentage(messages_in + messages_out, grand_total, default=0.0)
            result.append(
                ChannelBreakdownRow(
                    channel_id=channel_id,
                    channel_name=channel.name if channel else channel_id,
                    channel_type=channel.type if channel else "unknown",
                    messages_in=messages_in,
                    messages_out=messages_out,
                    cost=round_half_up(sum(r.cost for r in channel_rows), 2),
                    avg_response_time_ms=_weighted_response_time(channel_rows),
                    percentage=round_half_up(share, 1),
                )
            )

        result.sort(key=lambda r: r.messages_in + r.messages_out, reverse=True)
        return result

    async def get_peak_hours(self, tenant_id: str, start: date, end: date) -> list[PeakHourBucket]:
        """Messages per UTC hour of day, summed over the whole range."""
        validate_range(start, end)
        rows = await self.store.query_hourly(
            tenant_id,
            day_start(start),
            day_start(end) + timedelta(days=1),
            grain=Grain.TENANT,
        )
        buckets = [0] * 24
        for row in rows:
            buckets[row.hour.astimezone(timezone.utc).hour] += row.messages_in + row.messages_out

        return [
            PeakHourBucket(hour=hour, messages=messages, label=f"{hour:02d}:00")
            for hour, messages in enumerate(buckets)
        ]

    async def get_cost_breakdown(self, tenant_id: str, start: date, end: date) -> CostBreakdown:
        validate_range(start, end)
        channels = await self.get_channel_breakdown(tenant_id, start, end)
        channel_cost = sum(c.cost for c in channels)
        by_channel = [
            ChannelCost(
                channel_id=c.channel_id,
                name=c.channel_name,
                cost=c.cost,
                percentage=round_half_up(percentage(c.cost, channel_cost, default=0.0), 1),
            )
            for c in channels
        ]

        window_end = day_start(end) + timedelta(days=1)
        window_start = window_end - timedelta(days=self.cost_by_model_window_days)
        usage = await self.store.group_events_by_model(tenant_id, window_start, window_end)
        by_model = sorted(
            (
                ModelCost(
                    model=u.model,
                    tokens_in=u.tokens_in,
                    tokens_out=u.tokens_out,
                    cost=round_half_up(u.cost, 6),
                )
                for u in usage
            ),
            key=lambda m: m.cost,
            reverse=True,
        )

        overview = await self.get_overview(tenant_id, start, end)
        human_cost = overview.messages.outgoing * self.human_cost_per_message
        savings = max(0.0, human_cost - overview.costs.total)

        return CostBreakdown(
            by_channel=by_channel,
            by_model=by_model,
            estimated_savings=round_half_up(savings, 2),
            currency=self.currency,
        )

    async def get_usage_summary(self, tenant_id: str, start: date, end: date) -> UsageSummary:
        overview = await self.get_overview(tenant_id, start, end)
        avg_cost_per_day = overview.costs.total / max(1, inclusive_days(start, end))
        return UsageSummary(
            total_tokens=overview.costs.tokens_in + overview.costs.tokens_out,
            tokens_in=overview.costs.tokens_in,
            tokens_out=overview.costs.tokens_out,
            total_cost=overview.costs.total,
            avg_cost_per_day=round_half_up(avg_cost_per_day, 2),
            projected_monthly_cost=round_half_up(avg_cost_per_day * 30, 2),
        )

    # ── Exports ────────────────────────────────────────────────────────────────
    async def export_csv(
        self,
        tenant_id: str,
        start: date,
        end: date,
        max_days: Optional[int] = None,
    ) -> str:
        """Every daily aggregate in range, all grains, one row per (date, scope)."""
        validate_range(start, end, max_days or settings.MAX_EXPORT_RANGE_DAYS)
        rows = await self.store.query_daily(tenant_id, start, end, grain=None)

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for row in rows:
            writer.writerow(
                [
                    row.day.isoformat(),
                    _cell(row.scope.workspace_id),
                    _cell(row.scope.channel_id),
                    row.messages_in,
                    row.messages_out,
                    row.conversations_started,
                    row.conversations_ended,
                    row.handoff_requests,
                    row.handoff_completed,
                    row.error_count,
                    row.feedback_positive,
                    row.feedback_negative,
                    _cell(row.avg_response_time_ms),
                    _cell(row.p50_response_time_ms),
                    _cell(row.p95_response_time_ms),
                    _cell(row.p99_response_time_ms),
                    row.tokens_in,
                    row.tokens_out,
                    f"{row.cost:.6f}",
                    row.unique_users,
                    _cell(row.peak_hour),
                    _cell(row.peak_hour_messages),
                ]
            )

        logger.info("analytics.csv_exported", tenant_id=tenant_id, rows=len(rows))
        return buffer.getvalue()

    async def export_json(
        self,
        tenant_id: str,
        start: date,
        end: date,
        max_days: Optional[int] = None,
    ) -> dict:
        validate_range(start, end, max_days or settings.MAX_EXPORT_RANGE_DAYS)
        overview = await self.get_overview(tenant_id, start, end)
        trends = await self.get_trends(tenant_id, start, end)
        channels = await self.get_channel_breakdown(tenant_id, start, end)

        logger.info("analytics.json_exported", tenant_id=tenant_id, days=len(trends))
        return {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "tenant_id": tenant_id,
            "overview": overview.model_dump(mode="json"),
            "daily_trends": [t.model_dump(mode="json") for t in trends],
            "channel_breakdown": [c.model_dump(mode="json") for c in channels],
        }
