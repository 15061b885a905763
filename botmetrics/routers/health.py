"""
Health probes for load balancers and Kubernetes.

/health/live  — the process answers
/health/ready — the analytics database answers a trivial query
/health       — both, plus build and environment info
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from botmetrics.core.config import settings
from botmetrics.core.database import get_db
from botmetrics.core.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    timestamp: datetime
    database: str


async def _database_status(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("health.database_unreachable", error=str(e))
        return "unreachable"
    return "connected"


@router.get("/live", summary="Liveness probe")
async def liveness():
    return {"status": "alive"}


@router.get("/ready", summary="Readiness probe")
async def readiness(db: AsyncSession = Depends(get_db)):
    db_status = await _database_status(db)
    return {"status": "ready" if db_status == "connected" else "degraded", "database": db_status}


@router.get("", response_model=HealthResponse, summary="Full health status")
async def health(db: AsyncSession = Depends(get_db)):
    db_status = await _database_status(db)
    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        version=settings.API_VERSION,
        environment=settings.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc),
        database=db_status,
    )
