"""
Event ingestion router — the write side of analytics.

Permission matrix:
  POST /analytics/events        → analyst+ (Permission.RECORD_EVENTS)
  POST /analytics/events/batch  → analyst+ (Permission.RECORD_EVENTS)

Recording is fire-and-forget: the endpoints answer 202 either way and report
whether the store accepted the write. Malformed payloads still get a 422.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from botmetrics.core.limiter import get_role_limit, limiter
from botmetrics.core.logging import get_logger
from botmetrics.core.security import Permission, TokenPayload, require_permission
from botmetrics.domain import Event, EventKind, Scope, parse_metadata
from botmetrics.routers.deps import get_recorder
from botmetrics.services.recorder import EventRecorder

router = APIRouter()
logger = get_logger(__name__)

MAX_BATCH_SIZE = 1000


# ── Schemas ────────────────────────────────────────────────────────────────────
class EventIn(BaseModel):
    kind: EventKind
    workspace_id: Optional[str] = None
    channel_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    response_time_ms: Optional[int] = Field(default=None, ge=0)
    tokens_in: Optional[int] = Field(default=None, ge=0)
    tokens_out: Optional[int] = Field(default=None, ge=0)
    cost: Optional[float] = Field(default=None, ge=0)
    model: Optional[str] = Field(default=None, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


class EventBatchIn(BaseModel):
    events: list[EventIn] = Field(max_length=MAX_BATCH_SIZE)


class AcceptedResponse(BaseModel):
    accepted: bool
    count: int


def _to_event(payload: EventIn, tenant_id: str) -> Event:
    occurred_at = payload.occurred_at or datetime.now(timezone.utc)
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)

    metadata = None
    if payload.metadata:
        metadata = parse_metadata({**payload.metadata, "kind": payload.kind.value})
        if metadata is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid metadata for event kind '{payload.kind.value}'",
            )

    return Event(
        scope=Scope(tenant_id, payload.workspace_id, payload.channel_id),
        kind=payload.kind,
        occurred_at=occurred_at.astimezone(timezone.utc),
        response_time_ms=payload.response_time_ms,
        tokens_in=payload.tokens_in,
        tokens_out=payload.tokens_out,
        cost=payload.cost,
        model=payload.model,
        metadata=metadata,
    )


# ── Endpoints ──────────────────────────────────────────────────────────────────
@router.post(
    "",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record one analytics event",
)
@limiter.limit(get_role_limit)
async def record_event(
    request: Request,
    payload: EventIn,
    current_user: TokenPayload = Depends(require_permission(Permission.RECORD_EVENTS)),
    recorder: EventRecorder = Depends(get_recorder),
):
    event = _to_event(payload, current_user.tenant_id)
    accepted = await recorder.record(event)
    return AcceptedResponse(accepted=accepted, count=1 if accepted else 0)


@router.post(
    "/batch",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record many analytics events in one write",
)
@limiter.limit(get_role_limit)
async def record_events(
    request: Request,
    payload: EventBatchIn,
    current_user: TokenPayload = Depends(require_permission(Permission.RECORD_EVENTS)),
    recorder: EventRecorder = Depends(get_recorder),
):
    events = [_to_event(item, current_user.tenant_id) for item in payload.events]
    accepted = await recorder.record_batch(events)
    return AcceptedResponse(accepted=accepted, count=len(events) if accepted else 0)
