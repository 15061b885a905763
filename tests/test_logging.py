"""Configured logging: log calls keep working and carry the bound job context."""

import io
import json
import logging
from datetime import date

import pytest

from botmetrics.adapters.sqlalchemy_store import SQLAlchemyAnalyticsStore
from botmetrics.core.config import settings
from botmetrics.core.logging import ROOT_LOGGER, get_logger, job_context, setup_logging
from botmetrics.domain import Scope
from botmetrics.services.recorder import EventRecorder
from botmetrics.services.rollup import RollupEngine

from tests.factories import ACME, GLOBEX, at, message_in


class UnreachableStore:
    async def append_event(self, event):
        raise ConnectionError("database is gone")

    async def append_events(self, events):
        raise ConnectionError("database is gone")


class GlobexDownStore(SQLAlchemyAnalyticsStore):
    async def list_channels(self, tenant_id):
        if tenant_id == GLOBEX:
            raise RuntimeError("directory unavailable")
        return await super().list_channels(tenant_id)


@pytest.fixture
def log_output(monkeypatch):
    """Configure JSON logging and collect every rendered line."""
    monkeypatch.setattr(settings, "LOG_FORMAT", "json")
    monkeypatch.setattr(settings, "LOG_LEVEL", "INFO")
    setup_logging()

    buffer = io.StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger(ROOT_LOGGER)
    root.addHandler(handler)
    yield buffer
    root.removeHandler(handler)


def _entries(buffer: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line.strip()]


class TestSetup:
    def test_entries_are_json_with_logger_name_and_severity(self, log_output):
        get_logger("botmetrics.tests.setup").warning("setup.checked", answer=42)

        (entry,) = _entries(log_output)
        assert entry["event"] == "setup.checked"
        assert entry["answer"] == 42
        assert entry["logger"] == "botmetrics.tests.setup"
        assert entry["level"] == "warning"
        assert entry["severity"] == "WARNING"
        assert "timestamp" in entry

    def test_below_configured_level_is_dropped(self, log_output):
        get_logger("botmetrics.tests.level").debug("setup.noise")
        assert _entries(log_output) == []

    def test_calling_setup_twice_keeps_one_handler(self, log_output):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger(ROOT_LOGGER).handlers) == 1

    def test_job_context_is_bound_and_released(self, log_output):
        logger = get_logger("botmetrics.tests.jobs")
        with job_context("daily", day="2024-01-01"):
            logger.info("jobs.step")
        logger.info("jobs.after")

        inside, after = _entries(log_output)
        assert inside["job"] == "daily"
        assert inside["day"] == "2024-01-01"
        assert "job" not in after


@pytest.mark.asyncio
class TestFailurePathsAfterSetup:
    async def test_recorder_still_swallows_storage_errors(self, log_output):
        recorder = EventRecorder(UnreachableStore())

        assert await recorder.record(message_in(Scope(ACME), at(2024, 1, 1))) is False
        assert await recorder.record_batch([message_in(Scope(ACME), at(2024, 1, 1))]) is False

    async def test_batch_survives_a_failing_tenant(self, log_output, store, directory_seed):
        store = GlobexDownStore(store._session_factory)
        await store.append_event(message_in(Scope(ACME), at(2024, 1, 1, 9)))

        report = await RollupEngine(store).aggregate_day_for_all_tenants(date(2024, 1, 1))

        assert report.succeeded == [ACME]
        assert report.failed == [GLOBEX]
        (row,) = await store.query_daily(ACME, date(2024, 1, 1), date(2024, 1, 1))
        assert row.messages_in == 1
