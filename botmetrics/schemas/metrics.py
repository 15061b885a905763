"""
Consumer-facing metric DTOs. Flat, JSON-serializable, returned as-is by the API.

None means "not enough data" and is never replaced by 0.
"""

import datetime as dt

from pydantic import BaseModel


class Period(BaseModel):
    start: dt.date
    end: dt.date


class MessageTotals(BaseModel):
    total: int
    incoming: int
    outgoing: int
    growth: float          # % vs the preceding period of equal length


class ConversationTotals(BaseModel):
    started: int
    ended: int
    ongoing: int


class ChannelSummary(BaseModel):
    total: int
    active: int
    by_type: dict[str, int]


class Performance(BaseModel):
    avg_response_time_ms: int | None
    p50_response_time_ms: int | None
    p95_response_time_ms: int | None
    p99_response_time_ms: int | None
    resolution_rate: float  # % of conversations with no handoff request
    error_rate: float


class Costs(BaseModel):
    total: float
    tokens_in: int
    tokens_out: int
    currency: str
    per_message: float | None


class Satisfaction(BaseModel):
    positive: int
    negative: int
    score: int | None      # 0-100


class OverviewMetrics(BaseModel):
    period: Period
    messages: MessageTotals
    conversations: ConversationTotals
    channels: ChannelSummary
    performance: Performance
    costs: Costs
    satisfaction: Satisfaction
    unique_users: int


class TrendPoint(BaseModel):
    date: dt.date
    messages_in: int
    messages_out: int
    cost: float
    avg_response_time_ms: int | None
    unique_users: int


class ChannelBreakdownRow(BaseModel):
    channel_id: str
    channel_name: str
    channel_type: str
    messages_in: int
    messages_out: int
    cost: float
    avg_response_time_ms: int | None
    percentage: float


class PeakHourBucket(BaseModel):
    hour: int
    messages: int
    label: str


class ChannelCost(BaseModel):
    channel_id: str
    name: str
    cost: float
    percentage: float


class ModelCost(BaseModel):
    model: str
    tokens_in: int
    tokens_out: int
    cost: float


class CostBreakdown(BaseModel):
    by_channel: list[ChannelCost]
    by_model: list[ModelCost]
    estimated_savings: float
    currency: str


class UsageSummary(BaseModel):
    total_tokens: int
    tokens_in: int
    tokens_out: int
    total_cost: float
    avg_cost_per_day: float
    projected_monthly_cost: float
