"""Scopes, event metadata and the store's handling of odd rows."""

import pytest

from botmetrics.domain import (
    ConversationMetadata,
    Event,
    EventKind,
    Grain,
    HandoffMetadata,
    Scope,
    SpecialistMetadata,
    dump_metadata,
    parse_metadata,
)
from botmetrics.models.analytics import AnalyticsEvent

from tests.factories import ACME, WEB, at


class TestScope:
    def test_key_and_grain(self):
        assert Scope(ACME).key == f"{ACME}||"
        assert Scope(ACME).grain == Grain.TENANT
        assert Scope(ACME, "ws-1").grain == Grain.WORKSPACE
        assert Scope(ACME, "ws-1", WEB).key == f"{ACME}|ws-1|{WEB}"
        assert Scope(ACME, None, WEB).grain == Grain.CHANNEL


class TestMetadata:
    def test_parse_by_kind(self):
        parsed = parse_metadata({"kind": "handoff_requested", "reason": "angry customer"})
        assert isinstance(parsed, HandoffMetadata)
        assert parsed.reason == "angry customer"

    def test_invalid_payload_is_dropped(self):
        assert parse_metadata({"kind": "specialist_invoked"}) is None
        assert parse_metadata({"kind": "nope"}) is None
        assert parse_metadata({}) is None
        assert parse_metadata(None) is None

    def test_dump_skips_empty_fields(self):
        metadata = ConversationMetadata(kind="conversation_end", resolved=True)
        assert dump_metadata(metadata) == {"kind": "conversation_end", "resolved": True}
        assert dump_metadata(None) == {}

    def test_mismatched_metadata_is_rejected(self):
        with pytest.raises(ValueError):
            Event(
                scope=Scope(ACME),
                kind=EventKind.MESSAGE_IN,
                occurred_at=at(2024, 1, 1),
                metadata=SpecialistMetadata(specialist_id="sp-1", specialist_name="Billing"),
            )


@pytest.mark.asyncio
class TestStoredRows:
    async def test_unknown_kind_is_skipped_on_read(self, store, db_session):
        db_session.add(
            AnalyticsEvent(tenant_id=ACME, kind="legacy_kind", data={}, occurred_at=at(2024, 1, 1))
        )
        db_session.add(
            AnalyticsEvent(
                tenant_id=ACME,
                kind="message_in",
                data={"kind": "error", "message": "stale"},
                occurred_at=at(2024, 1, 1, 13),
            )
        )
        await db_session.commit()

        events = await store.query_events(Scope(ACME), at(2024, 1, 1, 0), at(2024, 1, 2, 0))

        (event,) = events
        assert event.kind == EventKind.MESSAGE_IN
        assert event.metadata is None
        assert event.occurred_at.tzinfo is not None

    async def test_round_trip_keeps_metadata(self, store):
        original = Event(
            scope=Scope(ACME, "ws-1", WEB),
            kind=EventKind.CONVERSATION_END,
            occurred_at=at(2024, 1, 1, 8),
            metadata=ConversationMetadata(kind="conversation_end", user_id="u1", resolved=False),
        )
        await store.append_event(original)

        (stored,) = await store.query_events(Scope(ACME, "ws-1", WEB), at(2024, 1, 1, 0), at(2024, 1, 2, 0))
        assert stored == original
