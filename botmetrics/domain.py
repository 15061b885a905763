"""
Domain types shared by the recorder, rollup engine and metrics calculator.

Nothing in here knows about SQLAlchemy or HTTP. Storage adapters map their
rows onto these records and back.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class EventKind(str, Enum):
    MESSAGE_IN = "message_in"
    MESSAGE_OUT = "message_out"
    CONVERSATION_START = "conversation_start"
    CONVERSATION_END = "conversation_end"
    HANDOFF_REQUESTED = "handoff_requested"
    HANDOFF_COMPLETED = "handoff_completed"
    ERROR = "error"
    FEEDBACK_POSITIVE = "feedback_positive"
    FEEDBACK_NEGATIVE = "feedback_negative"
    SPECIALIST_INVOKED = "specialist_invoked"


# Only these kinds carry token usage and spend.
COST_BEARING_KINDS = frozenset({EventKind.MESSAGE_OUT, EventKind.SPECIALIST_INVOKED})


class Grain(str, Enum):
    TENANT = "tenant"        # no workspace, no channel
    WORKSPACE = "workspace"  # workspace only
    CHANNEL = "channel"      # channel set (workspace optional)


@dataclass(frozen=True)
class Scope:
    """The (tenant, workspace, channel) triple an event or aggregate applies to."""

    tenant_id: str
    workspace_id: Optional[str] = None
    channel_id: Optional[str] = None

    @property
    def key(self) -> str:
        """Canonical string form, used as the aggregate unique key."""
        return "|".join((self.tenant_id, self.workspace_id or "", self.channel_id or ""))

    @property
    def grain(self) -> Grain:
        if self.channel_id:
            return Grain.CHANNEL
        if self.workspace_id:
            return Grain.WORKSPACE
        return Grain.TENANT


# ── Event metadata (tagged by event kind) ──────────────────────────────────────
class MessageMetadata(BaseModel):
    kind: Literal["message_in", "message_out"]
    user_id: Optional[str] = None
    message_length: Optional[int] = None


class ConversationMetadata(BaseModel):
    kind: Literal["conversation_start", "conversation_end"]
    user_id: Optional[str] = None
    duration_ms: Optional[int] = None
    resolved: Optional[bool] = None


class HandoffMetadata(BaseModel):
    kind: Literal["handoff_requested", "handoff_completed"]
    user_id: Optional[str] = None
    reason: Optional[str] = None
    handled_by: Optional[str] = None
    duration_ms: Optional[int] = None


class ErrorMetadata(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    code: Optional[str] = None

    @property
    def user_id(self) -> None:
        return None


class FeedbackMetadata(BaseModel):
    kind: Literal["feedback_positive", "feedback_negative"]
    user_id: Optional[str] = None
    comment: Optional[str] = None


class SpecialistMetadata(BaseModel):
    kind: Literal["specialist_invoked"] = "specialist_invoked"
    specialist_id: str
    specialist_name: str

    @property
    def user_id(self) -> None:
        return None


EventMetadata = Annotated[
    Union[
        MessageMetadata,
        ConversationMetadata,
        HandoffMetadata,
        ErrorMetadata,
        FeedbackMetadata,
        SpecialistMetadata,
    ],
    Field(discriminator="kind"),
]

_metadata_adapter: TypeAdapter = TypeAdapter(EventMetadata)


def parse_metadata(raw: Optional[dict]) -> Optional[EventMetadata]:
    """Rebuild typed metadata from its stored JSON form.

    Payloads that do not validate are dropped rather than failing the read;
    the event itself still counts towards aggregates.
    """
    if not raw:
        return None
    try:
        return _metadata_adapter.validate_python(raw)
    except ValidationError:
        return None


def dump_metadata(metadata: Optional[EventMetadata]) -> dict:
    if metadata is None:
        return {}
    return metadata.model_dump(mode="json", exclude_none=True)


# ── Records ────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Event:
    """A single immutable business event."""

    scope: Scope
    kind: EventKind
    occurred_at: datetime
    response_time_ms: Optional[int] = None
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    cost: Optional[float] = None
    model: Optional[str] = None
    metadata: Optional[EventMetadata] = None

    def __post_init__(self):
        if self.metadata is not None and self.metadata.kind != self.kind.value:
            raise ValueError(
                f"metadata for '{self.metadata.kind}' attached to a '{self.kind.value}' event"
            )

    @property
    def user_id(self) -> Optional[str]:
        if self.metadata is None:
            return None
        return self.metadata.user_id


@dataclass
class HourlyAggregate:
    scope: Scope
    hour: datetime
    messages_in: int = 0
    messages_out: int = 0
    error_count: int = 0
    avg_response_time_ms: Optional[int] = None
    cost: float = 0.0


@dataclass
class DailyAggregate:
    scope: Scope
    day: date
    messages_in: int = 0
    messages_out: int = 0
    conversations_started: int = 0
    conversations_ended: int = 0
    handoff_requests: int = 0
    handoff_completed: int = 0
    error_count: int = 0
    feedback_positive: int = 0
    feedback_negative: int = 0
    avg_response_time_ms: Optional[int] = None
    p50_response_time_ms: Optional[int] = None
    p95_response_time_ms: Optional[int] = None
    p99_response_time_ms: Optional[int] = None
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    unique_users: int = 0
    peak_hour: Optional[int] = None
    peak_hour_messages: Optional[int] = None


# Counters that add up across scopes of the same tenant and day.
ADDITIVE_DAILY_FIELDS = (
    "messages_in",
    "messages_out",
    "conversations_started",
    "conversations_ended",
    "handoff_requests",
    "handoff_completed",
    "error_count",
    "feedback_positive",
    "feedback_negative",
    "tokens_in",
    "tokens_out",
)


@dataclass(frozen=True)
class ModelUsage:
    model: str
    tokens_in: int
    tokens_out: int
    cost: float


@dataclass(frozen=True)
class TenantRef:
    id: str
    name: str


@dataclass(frozen=True)
class ChannelRef:
    id: str
    tenant_id: str
    workspace_id: Optional[str]
    name: str
    type: str
    status: str = "CONNECTED"

    @property
    def scope(self) -> Scope:
        return Scope(self.tenant_id, self.workspace_id, self.id)


@dataclass
class BatchReport:
    """Outcome of a batch rollup across tenants."""

    period: str
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    channels_aggregated: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed
