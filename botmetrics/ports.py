"""Port definitions for event and aggregate storage.

The rollup engine and the metrics calculator only talk to these protocols, so
upsert, group-by and delete mechanics stay inside the storage adapters.
"""

from datetime import date, datetime
from typing import Optional, Protocol, Sequence

from botmetrics.domain import (
    ChannelRef,
    DailyAggregate,
    Event,
    Grain,
    HourlyAggregate,
    ModelUsage,
    Scope,
    TenantRef,
)


class EventWriter(Protocol):
    async def append_event(self, event: Event) -> None:
        """Persist one event."""

    async def append_events(self, events: Sequence[Event]) -> None:
        """Persist many events in a single operation."""

    async def delete_events_before(self, cutoff: datetime) -> int:
        """Delete events that occurred before ``cutoff``; return the count."""


class EventReader(Protocol):
    async def query_events(
        self,
        scope: Scope,
        start: datetime,
        end: datetime,
    ) -> Sequence[Event]:
        """Return events in ``[start, end)`` ordered by timestamp.

        ``workspace_id``/``channel_id`` on the scope narrow the query when set;
        when unset they do not filter.
        """

    async def group_events_by_model(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> Sequence[ModelUsage]:
        """Sum tokens and cost per model for events in ``[start, end)``."""


class AggregateWriter(Protocol):
    async def upsert_hourly(self, row: HourlyAggregate) -> None:
        """Store ``row`` under (scope, hour), replacing any previous value."""

    async def upsert_daily(self, row: DailyAggregate) -> None:
        """Store ``row`` under (scope, day), replacing any previous value."""

    async def delete_hourly_before(self, cutoff: datetime) -> int:
        """Delete hourly aggregates starting before ``cutoff``; return the count."""


class AggregateReader(Protocol):
    async def query_daily(
        self,
        tenant_id: str,
        start: date,
        end: date,
        grain: Optional[Grain] = Grain.TENANT,
        channel_id: Optional[str] = None,
    ) -> Sequence[DailyAggregate]:
        """Return daily rows with ``start <= day <= end`` ordered by day, scope key.

        ``grain=None`` returns every grain. ``channel_id`` restricts to one channel.
        """

    async def query_hourly(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        grain: Optional[Grain] = Grain.TENANT,
    ) -> Sequence[HourlyAggregate]:
        """Return hourly rows with ``start <= hour < end`` ordered by hour."""


class TenantDirectory(Protocol):
    async def list_active_tenants(self) -> Sequence[TenantRef]:
        """Return active tenants in a stable order."""

    async def list_channels(self, tenant_id: str) -> Sequence[ChannelRef]:
        """Return the tenant's active channels."""


class AnalyticsStore(EventWriter, EventReader, AggregateWriter, AggregateReader, TenantDirectory, Protocol):
    """Everything the analytics services need from storage."""
