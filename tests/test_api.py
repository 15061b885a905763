"""
API test suite for Botmetrics.

Tests cover:
  - Authentication and RBAC (viewer / analyst / admin / super_admin)
  - Event ingestion (single, batch, metadata validation)
  - Metric reads with tenant scoping
  - Exports (CSV / JSON, range limits)
  - Job triggers and health probes

Run with: pytest tests/ -v
"""

import csv
import io

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from botmetrics.core.database import get_db
from botmetrics.core.limiter import limiter
from botmetrics.core.security import Role
from botmetrics.main import app
from botmetrics.routers.deps import get_store

from tests.factories import ACME, GLOBEX, WEB, access_token

BASE = "/api/v1/analytics"


# ── Fixtures ───────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def client(store):
    async def override_get_db():
        async with store._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: store
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(role: Role, tenant_id: str = ACME, user_id: str | None = None) -> dict:
    token = access_token(user_id or f"{role.value}-1", tenant_id, role)
    return {"Authorization": f"Bearer {token}"}


def _message(kind: str, occurred_at: str, **fields) -> dict:
    return {"kind": kind, "occurred_at": occurred_at, "workspace_id": "ws-1", "channel_id": WEB, **fields}


async def _ingest_day(client: AsyncClient) -> None:
    events = [
        _message("conversation_start", "2024-01-01T09:00:00Z", metadata={"user_id": "u1"}),
        _message("message_in", "2024-01-01T09:00:05Z", metadata={"user_id": "u1"}),
        _message(
            "message_out",
            "2024-01-01T09:00:06Z",
            response_time_ms=100,
            tokens_in=10,
            tokens_out=20,
            cost=0.01,
            model="gpt-4o-mini",
            metadata={"user_id": "u1"},
        ),
        _message(
            "message_out",
            "2024-01-01T10:00:00Z",
            response_time_ms=300,
            tokens_in=10,
            tokens_out=20,
            cost=0.02,
            model="gpt-4o-mini",
        ),
        _message("feedback_positive", "2024-01-01T10:05:00Z", metadata={"user_id": "u1"}),
    ]
    response = await client.post(
        f"{BASE}/events/batch", json={"events": events}, headers=auth_headers(Role.ANALYST)
    )
    assert response.status_code == 202
    assert response.json() == {"accepted": True, "count": 5}


async def _aggregate(client: AsyncClient, day: str = "2024-01-01") -> dict:
    response = await client.post(
        f"{BASE}/jobs/aggregate-day", params={"day": day}, headers=auth_headers(Role.SUPER_ADMIN)
    )
    assert response.status_code == 200
    return response.json()


# ── Health ─────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
class TestHealth:
    async def test_liveness(self, client):
        response = await client.get("/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_readiness(self, client):
        response = await client.get("/health/ready")
        assert response.json() == {"status": "ready", "database": "connected"}

    async def test_full_health(self, client):
        response = await client.get("/health")
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"


# ── Authentication & RBAC ──────────────────────────────────────────────────────
@pytest.mark.asyncio
class TestAuth:
    async def test_missing_token(self, client):
        response = await client.get(f"{BASE}/overview")
        assert response.status_code in (401, 403)

    async def test_invalid_token(self, client):
        response = await client.get(
            f"{BASE}/overview", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    async def test_viewer_can_read(self, client):
        response = await client.get(f"{BASE}/overview", headers=auth_headers(Role.VIEWER))
        assert response.status_code == 200

    async def test_viewer_cannot_ingest(self, client):
        response = await client.post(
            f"{BASE}/events",
            json={"kind": "message_in"},
            headers=auth_headers(Role.VIEWER),
        )
        assert response.status_code == 403

    async def test_viewer_cannot_export(self, client):
        response = await client.get(f"{BASE}/export", headers=auth_headers(Role.VIEWER))
        assert response.status_code == 403

    @pytest.mark.parametrize("role", [Role.VIEWER, Role.ANALYST, Role.ADMIN])
    async def test_only_super_admin_runs_jobs(self, client, role):
        response = await client.post(f"{BASE}/jobs/cleanup", headers=auth_headers(role))
        assert response.status_code == 403

    async def test_request_id_header(self, client):
        response = await client.get(f"{BASE}/overview", headers=auth_headers(Role.VIEWER))
        assert response.headers.get("X-Request-ID")


# ── Ingestion ──────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
class TestIngestion:
    async def test_record_single_event(self, client, store):
        response = await client.post(
            f"{BASE}/events",
            json=_message("message_in", "2024-01-01T09:00:00Z", metadata={"user_id": "u9"}),
            headers=auth_headers(Role.ANALYST),
        )

        assert response.status_code == 202
        assert response.json() == {"accepted": True, "count": 1}

    async def test_tenant_comes_from_token(self, client, store, directory_seed):
        await client.post(
            f"{BASE}/events",
            json={"kind": "message_in", "occurred_at": "2024-01-01T09:00:00Z"},
            headers=auth_headers(Role.ANALYST, tenant_id=GLOBEX),
        )
        await _aggregate(client)

        acme = await client.get(
            f"{BASE}/overview",
            params={"start": "2024-01-01", "end": "2024-01-01"},
            headers=auth_headers(Role.VIEWER),
        )
        globex = await client.get(
            f"{BASE}/overview",
            params={"start": "2024-01-01", "end": "2024-01-01"},
            headers=auth_headers(Role.VIEWER, tenant_id=GLOBEX),
        )
        assert acme.json()["messages"]["total"] == 0
        assert globex.json()["messages"]["total"] == 1

    async def test_metadata_must_match_kind(self, client):
        response = await client.post(
            f"{BASE}/events",
            json={"kind": "specialist_invoked", "metadata": {"user_id": "u1"}},
            headers=auth_headers(Role.ANALYST),
        )
        assert response.status_code == 422

    async def test_unknown_kind_rejected(self, client):
        response = await client.post(
            f"{BASE}/events",
            json={"kind": "message_sideways"},
            headers=auth_headers(Role.ANALYST),
        )
        assert response.status_code == 422

    async def test_negative_latency_rejected(self, client):
        response = await client.post(
            f"{BASE}/events",
            json={"kind": "message_out", "response_time_ms": -5},
            headers=auth_headers(Role.ANALYST),
        )
        assert response.status_code == 422


# ── Metrics ────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
class TestMetrics:
    async def test_ingest_aggregate_read(self, client, directory_seed):
        await _ingest_day(client)
        report = await _aggregate(client)
        assert report["ok"] is True
        assert report["period"] == "2024-01-01"

        response = await client.get(
            f"{BASE}/overview",
            params={"start": "2024-01-01", "end": "2024-01-01"},
            headers=auth_headers(Role.VIEWER),
        )
        body = response.json()

        assert response.status_code == 200
        assert body["messages"] == {"total": 3, "incoming": 1, "outgoing": 2, "growth": 0.0}
        assert body["performance"]["avg_response_time_ms"] == 200
        assert body["performance"]["p50_response_time_ms"] == 100
        assert body["performance"]["resolution_rate"] == 100.0
        assert body["costs"]["total"] == 0.03
        assert body["satisfaction"]["score"] == 100
        assert body["unique_users"] == 1

    async def test_trends_and_channels(self, client, directory_seed):
        await _ingest_day(client)
        await _aggregate(client)
        params = {"start": "2024-01-01", "end": "2024-01-03"}

        trends = await client.get(f"{BASE}/trends", params=params, headers=auth_headers(Role.VIEWER))
        channels = await client.get(f"{BASE}/channels", params=params, headers=auth_headers(Role.VIEWER))

        assert [p["date"] for p in trends.json()] == ["2024-01-01"]
        (web,) = channels.json()
        assert web["channel_name"] == "Website"
        assert web["percentage"] == 100.0

    async def test_costs_and_usage(self, client, directory_seed):
        await _ingest_day(client)
        await _aggregate(client)
        params = {"start": "2024-01-01", "end": "2024-01-01"}

        costs = await client.get(f"{BASE}/costs", params=params, headers=auth_headers(Role.VIEWER))
        usage = await client.get(f"{BASE}/usage", params=params, headers=auth_headers(Role.VIEWER))

        assert costs.status_code == 200
        assert costs.json()["estimated_savings"] == 4.97
        assert usage.json()["total_tokens"] == 60

    async def test_peak_hours_shape(self, client):
        response = await client.get(f"{BASE}/peak-hours", headers=auth_headers(Role.VIEWER))
        assert response.status_code == 200
        assert len(response.json()) == 24

    async def test_inverted_range_is_400(self, client):
        response = await client.get(
            f"{BASE}/overview",
            params={"start": "2024-02-01", "end": "2024-01-01"},
            headers=auth_headers(Role.VIEWER),
        )
        assert response.status_code == 400


# ── Export ─────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
class TestExport:
    async def test_csv_download(self, client, directory_seed):
        await _ingest_day(client)
        await _aggregate(client)

        response = await client.get(
            f"{BASE}/export",
            params={"format": "csv", "start": "2024-01-01", "end": "2024-01-01"},
            headers=auth_headers(Role.ANALYST),
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert len(rows) == 2  # tenant row + the webchat channel
        assert {r["cost_usd"] for r in rows} == {"0.030000"}

    async def test_json_download(self, client):
        response = await client.get(
            f"{BASE}/export",
            params={"format": "json", "start": "2024-01-01", "end": "2024-01-31"},
            headers=auth_headers(Role.ADMIN),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["tenant_id"] == ACME
        assert body["period"] == {"start": "2024-01-01", "end": "2024-01-31"}

    async def test_range_over_a_year_is_400(self, client):
        response = await client.get(
            f"{BASE}/export",
            params={"start": "2022-01-01", "end": "2024-01-01"},
            headers=auth_headers(Role.ANALYST),
        )
        assert response.status_code == 400

    async def test_unknown_format_is_422(self, client):
        response = await client.get(
            f"{BASE}/export", params={"format": "xlsx"}, headers=auth_headers(Role.ANALYST)
        )
        assert response.status_code == 422


# ── Jobs ───────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
class TestJobs:
    async def test_aggregate_day_reports_tenants(self, client, directory_seed):
        report = await _aggregate(client)
        assert sorted(report["succeeded"]) == [ACME, GLOBEX]
        assert report["failed"] == []

    async def test_aggregate_hour(self, client, directory_seed):
        await _ingest_day(client)
        response = await client.post(
            f"{BASE}/jobs/aggregate-hour",
            params={"hour": "2024-01-01T09:30:00Z"},
            headers=auth_headers(Role.SUPER_ADMIN),
        )

        assert response.status_code == 200
        assert response.json()["period"] == "2024-01-01T09:00:00+00:00"

    async def test_cleanup(self, client):
        response = await client.post(f"{BASE}/jobs/cleanup", headers=auth_headers(Role.SUPER_ADMIN))

        assert response.status_code == 200
        assert response.json() == {"events_deleted": 0, "hourly_deleted": 0}
