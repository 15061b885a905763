"""
Async engine and session factory for the analytics store.

SQLite (aiosqlite) serves development, tests and single-node installs;
PostgreSQL (asyncpg) serves production. Both dialects support the
``INSERT ... ON CONFLICT`` upserts the rollups rely on.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from botmetrics.core.config import settings
from botmetrics.core.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_DIALECTS = ("sqlite", "postgresql")


def engine_options(database_url: str) -> dict[str, Any]:
    """Engine keyword arguments for the configured backend."""
    url = make_url(database_url)
    if url.get_backend_name() not in SUPPORTED_DIALECTS:
        raise ValueError(f"Unsupported database backend: {url.get_backend_name()}")

    options: dict[str, Any] = {"echo": settings.DATABASE_ECHO, "pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        # Concurrent rollups wait for the write lock instead of failing fast
        options["connect_args"] = {"timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS}
    else:
        options["pool_size"] = settings.DATABASE_POOL_SIZE
        options["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        options["pool_recycle"] = 3600
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Declarative base for the event, aggregate and directory tables."""
    pass


async def init_db() -> None:
    """Create missing tables. Existing tables are left untouched."""
    from botmetrics.models import analytics, directory  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(
        "database.ready",
        url=engine.url.render_as_string(hide_password=True),
        tables=sorted(Base.metadata.tables),
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for the health probes; analytics routes go through the store."""
    async with AsyncSessionLocal() as session:
        yield session
