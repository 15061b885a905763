"""
Event recorder — appends analytics events for later aggregation.

Recording is fire-and-forget: a storage failure is logged and dropped so that
message delivery and the other flows emitting events are never interrupted.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence

from botmetrics.core.logging import get_logger
from botmetrics.domain import (
    ConversationMetadata,
    ErrorMetadata,
    Event,
    EventKind,
    EventMetadata,
    FeedbackMetadata,
    HandoffMetadata,
    MessageMetadata,
    Scope,
    SpecialistMetadata,
)
from botmetrics.ports import EventWriter

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventRecorder:
    def __init__(self, store: EventWriter):
        self.store = store

    async def record(self, event: Event) -> bool:
        """Persist one event. Returns False instead of raising on failure."""
        try:
            await self.store.append_event(event)
        except Exception as e:
            logger.error(
                "analytics.record_failed",
                tenant_id=event.scope.tenant_id,
                channel_id=event.scope.channel_id,
                kind=event.kind.value,
                error=str(e),
            )
            return False
        return True

    async def record_batch(self, events: Sequence[Event]) -> bool:
        """Persist many events in one write. Same contract as record()."""
        if not events:
            return True
        try:
            await self.store.append_events(events)
        except Exception as e:
            logger.error(
                "analytics.record_batch_failed",
                count=len(events),
                tenant_ids=sorted({event.scope.tenant_id for event in events}),
                error=str(e),
            )
            return False
        logger.debug("analytics.batch_recorded", count=len(events))
        return True

    # ── Convenience trackers ───────────────────────────────────────────────────
    async def _track(
        self,
        scope: Scope,
        kind: EventKind,
        metadata: Optional[EventMetadata] = None,
        occurred_at: Optional[datetime] = None,
        **fields,
    ) -> bool:
        event = Event(
            scope=scope,
            kind=kind,
            occurred_at=occurred_at or utcnow(),
            metadata=metadata,
            **fields,
        )
        return await self.record(event)

    async def track_message_in(
        self,
        scope: Scope,
        user_id: Optional[str] = None,
        message_length: Optional[int] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.MESSAGE_IN,
            MessageMetadata(kind="message_in", user_id=user_id, message_length=message_length),
            occurred_at,
        )

    async def track_message_out(
        self,
        scope: Scope,
        response_time_ms: int,
        tokens_in: int,
        tokens_out: int,
        cost: float,
        model: str,
        user_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.MESSAGE_OUT,
            MessageMetadata(kind="message_out", user_id=user_id),
            occurred_at,
            response_time_ms=response_time_ms,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=cost,
            model=model,
        )

    async def track_conversation_start(
        self,
        scope: Scope,
        user_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.CONVERSATION_START,
            ConversationMetadata(kind="conversation_start", user_id=user_id),
            occurred_at,
        )

    async def track_conversation_end(
        self,
        scope: Scope,
        user_id: Optional[str] = None,
        duration_ms: Optional[int] = None,
        resolved: Optional[bool] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.CONVERSATION_END,
            ConversationMetadata(
                kind="conversation_end",
                user_id=user_id,
                duration_ms=duration_ms,
                resolved=resolved,
            ),
            occurred_at,
        )

    async def track_handoff_request(
        self,
        scope: Scope,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.HANDOFF_REQUESTED,
            HandoffMetadata(kind="handoff_requested", user_id=user_id, reason=reason),
            occurred_at,
        )

    async def track_handoff_completed(
        self,
        scope: Scope,
        user_id: Optional[str] = None,
        handled_by: Optional[str] = None,
        duration_ms: Optional[int] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.HANDOFF_COMPLETED,
            HandoffMetadata(
                kind="handoff_completed",
                user_id=user_id,
                handled_by=handled_by,
                duration_ms=duration_ms,
            ),
            occurred_at,
        )

    async def track_error(
        self,
        scope: Scope,
        message: str,
        code: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.ERROR,
            ErrorMetadata(message=message, code=code),
            occurred_at,
        )

    async def track_feedback(
        self,
        scope: Scope,
        positive: bool,
        user_id: Optional[str] = None,
        comment: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        kind = EventKind.FEEDBACK_POSITIVE if positive else EventKind.FEEDBACK_NEGATIVE
        return await self._track(
            scope,
            kind,
            FeedbackMetadata(kind=kind.value, user_id=user_id, comment=comment),
            occurred_at,
        )

    async def track_specialist_invoked(
        self,
        scope: Scope,
        specialist_id: str,
        specialist_name: str,
        tokens_in: Optional[int] = None,
        tokens_out: Optional[int] = None,
        cost: Optional[float] = None,
        model: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        return await self._track(
            scope,
            EventKind.SPECIALIST_INVOKED,
            SpecialistMetadata(specialist_id=specialist_id, specialist_name=specialist_name),
            occurred_at,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=cost,
            model=model,
        )
