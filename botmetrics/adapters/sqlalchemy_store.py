"""SQLAlchemy adapter implementing the analytics storage ports.

Every port call opens its own short session and transaction. Event appends
therefore never share fate with the caller's unit of work. Aggregate upserts
are a single ``INSERT ... ON CONFLICT DO UPDATE`` on the (scope_key, period)
unique key, so concurrent reruns of the same key end with the last write.
"""

from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from botmetrics.core.logging import get_logger
from botmetrics.domain import (
    ChannelRef,
    DailyAggregate,
    Event,
    EventKind,
    Grain,
    HourlyAggregate,
    ModelUsage,
    Scope,
    TenantRef,
    dump_metadata,
    parse_metadata,
)
from botmetrics.models.analytics import AnalyticsEvent, DailyAggregateRow, HourlyAggregateRow
from botmetrics.models.directory import Channel, Tenant

logger = get_logger(__name__)

_HOURLY_FIELDS = ("messages_in", "messages_out", "error_count", "avg_response_time_ms", "cost")

_DAILY_FIELDS = (
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
    "cost",
    "unique_users",
    "peak_hour",
    "peak_hour_messages",
)


class SQLAlchemyAnalyticsStore:
    """Maps analytics domain records to relational tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Events ─────────────────────────────────────────────────────────────────
    async def append_event(self, event: Event) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(_event_to_row(event))

    async def append_events(self, events: Sequence[Event]) -> None:
        if not events:
            return
        async with self._session_factory() as session:
            async with session.begin():
                session.add_all([_event_to_row(event) for event in events])

    async def query_events(
        self,
        scope: Scope,
        start: datetime,
        end: datetime,
    ) -> Sequence[Event]:
        stmt = (
            select(AnalyticsEvent)
            .where(
                AnalyticsEvent.tenant_id == scope.tenant_id,
                AnalyticsEvent.occurred_at >= start,
                AnalyticsEvent.occurred_at < end,
            )
            .order_by(AnalyticsEvent.occurred_at)
        )
        if scope.workspace_id:
            stmt = stmt.where(AnalyticsEvent.workspace_id == scope.workspace_id)
        if scope.channel_id:
            stmt = stmt.where(AnalyticsEvent.channel_id == scope.channel_id)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        events = []
        for row in rows:
            event = _row_to_event(row)
            if event is not None:
                events.append(event)
        return events

    async def group_events_by_model(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> Sequence[ModelUsage]:
        stmt = (
            select(
                AnalyticsEvent.model,
                func.coalesce(func.sum(AnalyticsEvent.tokens_in), 0).label("tokens_in"),
                func.coalesce(func.sum(AnalyticsEvent.tokens_out), 0).label("tokens_out"),
                func.coalesce(func.sum(AnalyticsEvent.cost), 0.0).label("cost"),
            )
            .where(
                AnalyticsEvent.tenant_id == tenant_id,
                AnalyticsEvent.occurred_at >= start,
                AnalyticsEvent.occurred_at < end,
                AnalyticsEvent.model.is_not(None),
            )
            .group_by(AnalyticsEvent.model)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            ModelUsage(
                model=row.model,
                tokens_in=int(row.tokens_in or 0),
                tokens_out=int(row.tokens_out or 0),
                cost=float(row.cost or 0.0),
            )
            for row in rows
        ]

    async def delete_events_before(self, cutoff: datetime) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(AnalyticsEvent).where(AnalyticsEvent.occurred_at < cutoff)
                )
        return result.rowcount or 0

    # ── Aggregates ─────────────────────────────────────────────────────────────
    async def upsert_hourly(self, row: HourlyAggregate) -> None:
        values = {name: getattr(row, name) for name in _HOURLY_FIELDS}
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    _upsert(session, HourlyAggregateRow, row.scope, {"hour": row.hour}, values)
                )

    async def upsert_daily(self, row: DailyAggregate) -> None:
        values = {name: getattr(row, name) for name in _DAILY_FIELDS}
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    _upsert(session, DailyAggregateRow, row.scope, {"day": row.day}, values)
                )

    async def delete_hourly_before(self, cutoff: datetime) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(HourlyAggregateRow).where(HourlyAggregateRow.hour < cutoff)
                )
        return result.rowcount or 0

    async def query_daily(
        self,
        tenant_id: str,
        start: date,
        end: date,
        grain: Optional[Grain] = Grain.TENANT,
        channel_id: Optional[str] = None,
    ) -> Sequence[DailyAggregate]:
        stmt = (
            select(DailyAggregateRow)
            .where(
                DailyAggregateRow.tenant_id == tenant_id,
                DailyAggregateRow.day >= start,
                DailyAggregateRow.day <= end,
            )
            .order_by(DailyAggregateRow.day, DailyAggregateRow.scope_key)
        )
        if channel_id:
            stmt = stmt.where(DailyAggregateRow.channel_id == channel_id)
        elif grain is not None:
            stmt = _filter_grain(stmt, DailyAggregateRow, grain)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [
            DailyAggregate(
                scope=Scope(row.tenant_id, row.workspace_id, row.channel_id),
                day=row.day,
                **{name: getattr(row, name) for name in _DAILY_FIELDS},
            )
            for row in rows
        ]

    async def query_hourly(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        grain: Optional[Grain] = Grain.TENANT,
    ) -> Sequence[HourlyAggregate]:
        stmt = (
            select(HourlyAggregateRow)
            .where(
                HourlyAggregateRow.tenant_id == tenant_id,
                HourlyAggregateRow.hour >= start,
                HourlyAggregateRow.hour < end,
            )
            .order_by(HourlyAggregateRow.hour, HourlyAggregateRow.scope_key)
        )
        if grain is not None:
            stmt = _filter_grain(stmt, HourlyAggregateRow, grain)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [
            HourlyAggregate(
                scope=Scope(row.tenant_id, row.workspace_id, row.channel_id),
                hour=_as_utc(row.hour),
                **{name: getattr(row, name) for name in _HOURLY_FIELDS},
            )
            for row in rows
        ]

    # ── Directory ──────────────────────────────────────────────────────────────
    async def list_active_tenants(self) -> Sequence[TenantRef]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(Tenant.id, Tenant.name)
                    .where(Tenant.is_active == True)  # noqa: E712
                    .order_by(Tenant.name, Tenant.id)
                )
            ).all()
        return [TenantRef(id=row.id, name=row.name) for row in rows]

    async def list_channels(self, tenant_id: str) -> Sequence[ChannelRef]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(Channel)
                    .where(Channel.tenant_id == tenant_id, Channel.is_active == True)  # noqa: E712
                    .order_by(Channel.name, Channel.id)
                )
            ).scalars().all()
        return [
            ChannelRef(
                id=row.id,
                tenant_id=row.tenant_id,
                workspace_id=row.workspace_id,
                name=row.name,
                type=row.type,
                status=row.status,
            )
            for row in rows
        ]


def _filter_grain(stmt, model, grain: Grain):
    if grain == Grain.TENANT:
        return stmt.where(model.workspace_id.is_(None), model.channel_id.is_(None))
    if grain == Grain.WORKSPACE:
        return stmt.where(model.workspace_id.is_not(None), model.channel_id.is_(None))
    return stmt.where(model.channel_id.is_not(None))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored here is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _event_to_row(event: Event) -> AnalyticsEvent:
    return AnalyticsEvent(
        tenant_id=event.scope.tenant_id,
        workspace_id=event.scope.workspace_id,
        channel_id=event.scope.channel_id,
        kind=event.kind.value,
        response_time_ms=event.response_time_ms,
        tokens_in=event.tokens_in,
        tokens_out=event.tokens_out,
        cost=event.cost,
        model=event.model,
        data=dump_metadata(event.metadata),
        occurred_at=_as_utc(event.occurred_at),
    )


def _row_to_event(row: AnalyticsEvent) -> Optional[Event]:
    try:
        kind = EventKind(row.kind)
    except ValueError:
        logger.warning("analytics.unknown_event_kind", event_id=row.id, kind=row.kind)
        return None

    metadata = parse_metadata(row.data)
    if metadata is not None and metadata.kind != kind.value:
        metadata = None

    return Event(
        scope=Scope(row.tenant_id, row.workspace_id, row.channel_id),
        kind=kind,
        occurred_at=_as_utc(row.occurred_at),
        response_time_ms=row.response_time_ms,
        tokens_in=row.tokens_in,
        tokens_out=row.tokens_out,
        cost=row.cost,
        model=row.model,
        metadata=metadata,
    )


def _upsert(session: AsyncSession, model, scope: Scope, period: dict, values: dict):
    """``INSERT ... ON CONFLICT (scope_key, period) DO UPDATE`` for the bound dialect."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"aggregate upsert is not supported on {dialect}")

    stmt = insert(model).values(
        scope_key=scope.key,
        tenant_id=scope.tenant_id,
        workspace_id=scope.workspace_id,
        channel_id=scope.channel_id,
        **period,
        **values,
    )
    return stmt.on_conflict_do_update(
        index_elements=["scope_key", *period],
        set_={**{name: stmt.excluded[name] for name in values}, "updated_at": func.now()},
    )
