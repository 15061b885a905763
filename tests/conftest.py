"""
Shared fixtures: an isolated in-memory SQLite database, the SQLAlchemy store
bound to it, and a small tenant/channel directory.
"""

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from botmetrics.adapters.sqlalchemy_store import SQLAlchemyAnalyticsStore
from botmetrics.core.database import Base
from botmetrics.models import analytics, directory  # noqa: F401  register models
from botmetrics.models.directory import Channel, Tenant

from tests.factories import ACME, GLOBEX, WEB, WHATSAPP

# ── Test database — isolated in-memory SQLite ──────────────────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
TestSessionLocal = async_sessionmaker(
    bind=test_engine, class_=AsyncSession, expire_on_commit=False
)


# ── Fixtures ───────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture(scope="function", autouse=True)
async def setup_db():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session():
    async with TestSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def store() -> SQLAlchemyAnalyticsStore:
    return SQLAlchemyAnalyticsStore(TestSessionLocal)


@pytest_asyncio.fixture
async def directory_seed(db_session: AsyncSession):
    """Two active tenants; Acme has a webchat and a WhatsApp channel."""
    db_session.add_all(
        [
            Tenant(id=ACME, name="Acme Corp", slug="acme"),
            Tenant(id=GLOBEX, name="Globex Inc", slug="globex"),
            Tenant(id="tenant-dormant", name="Dormant Ltd", slug="dormant", is_active=False),
        ]
    )
    await db_session.flush()
    db_session.add_all(
        [
            Channel(id=WEB, tenant_id=ACME, workspace_id="ws-1", name="Website", type="WEBCHAT"),
            Channel(
                id=WHATSAPP,
                tenant_id=ACME,
                workspace_id="ws-1",
                name="WhatsApp",
                type="WHATSAPP",
                status="DISCONNECTED",
            ),
            Channel(
                id="chan-retired",
                tenant_id=ACME,
                name="Old widget",
                type="WEBCHAT",
                is_active=False,
            ),
        ]
    )
    await db_session.commit()
