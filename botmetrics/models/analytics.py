"""
Analytics ORM models — raw events plus the hourly and daily aggregate tiers.

Aggregate rows are keyed by (scope_key, period). scope_key is the canonical
"tenant|workspace|channel" string; the nullable id columns are kept alongside
for filtering. SQL treats NULLs in unique constraints as distinct, which is why
the key column exists at all.
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from botmetrics.core.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    workspace_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_in: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_out: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_events_tenant_occurred", "tenant_id", "occurred_at"),
        Index("ix_events_tenant_channel_occurred", "tenant_id", "channel_id", "occurred_at"),
        Index("ix_events_occurred", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<AnalyticsEvent id={self.id} kind={self.kind} tenant={self.tenant_id}>"


class HourlyAggregateRow(Base):
    __tablename__ = "hourly_aggregates"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    scope_key: Mapped[str] = mapped_column(String(120), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    workspace_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    hour: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    messages_in: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_out: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("scope_key", "hour", name="uq_hourly_scope_hour"),
        Index("ix_hourly_tenant_hour", "tenant_id", "hour"),
    )


class DailyAggregateRow(Base):
    __tablename__ = "daily_aggregates"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    scope_key: Mapped[str] = mapped_column(String(120), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    workspace_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)

    messages_in: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_out: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversations_started: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversations_ended: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    handoff_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    handoff_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    feedback_positive: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    feedback_negative: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    avg_response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    p50_response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    p95_response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    p99_response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tokens_in: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tokens_out: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    unique_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    peak_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    peak_hour_messages: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("scope_key", "day", name="uq_daily_scope_day"),
        Index("ix_daily_tenant_day", "tenant_id", "day"),
    )
