"""
Botmetrics API — conversation analytics for multi-tenant chatbot deployments
Event ingestion · Daily/hourly rollups · Dashboard metrics · Exports
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from botmetrics.core.config import settings
from botmetrics.core.database import init_db
from botmetrics.core.limiter import limiter
from botmetrics.core.logging import get_logger, setup_logging
from botmetrics.middleware.audit import AuditLogMiddleware
from botmetrics.middleware.tenant import TenantMiddleware
from botmetrics.routers import analytics, events, health, jobs

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("api.startup", version=settings.API_VERSION, env=settings.ENVIRONMENT)
    await init_db()
    logger.info("api.database_ready")
    yield
    logger.info("api.shutdown")


app = FastAPI(
    title="Botmetrics API",
    description="""
## Conversation Analytics API

Records chatbot events and serves the metrics derived from them:

- **Ingestion** — fire-and-forget event recording, single or batched
- **Rollups** — daily and hourly aggregates per tenant and channel
- **Dashboards** — overview, trends, channel breakdown, peak hours, costs, usage
- **Exports** — daily aggregates as CSV or JSON

### Roles & Permissions

| Role | Rate Limit | Permissions |
|------|-----------|-------------|
| `viewer` | 60/min | Read metrics |
| `analyst` | 200/min | Read + record events + export |
| `admin` | 500/min | Same as analyst, higher limits |
| `super_admin` | 500/min | Everything, including cross-tenant jobs |
    """,
    version=settings.API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware (order matters — outermost runs first) ─────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(AuditLogMiddleware)
app.add_middleware(TenantMiddleware)

# ── Rate limit error handler ───────────────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Global exception handler ───────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "api.unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ── Routers ────────────────────────────────────────────────────────────────────
app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(events.router, prefix="/api/v1/analytics/events", tags=["Events"])
app.include_router(analytics.router, prefix="/api/v1/analytics", tags=["Analytics"])
app.include_router(jobs.router, prefix="/api/v1/analytics/jobs", tags=["Jobs"])
