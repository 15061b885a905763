"""
Jobs router — on-demand triggers for the scheduled rollup and retention work.

Permission matrix:
  POST /jobs/aggregate-yesterday → super_admin (Permission.RUN_JOBS)
  POST /jobs/aggregate-day       → super_admin
  POST /jobs/aggregate-hour      → super_admin
  POST /jobs/cleanup             → super_admin

These span every tenant, so they are not tenant-scoped like the rest of the API.
The same work runs from cron through the botmetrics-jobs command.
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from botmetrics.core.limiter import get_role_limit, limiter
from botmetrics.core.logging import get_logger, job_context
from botmetrics.core.security import Permission, TokenPayload, require_permission
from botmetrics.domain import BatchReport
from botmetrics.routers.deps import get_rollup, get_store
from botmetrics.services.retention import run_retention
from botmetrics.services.rollup import RollupEngine

router = APIRouter()
logger = get_logger(__name__)

run_jobs = require_permission(Permission.RUN_JOBS)


# ── Schemas ────────────────────────────────────────────────────────────────────
class BatchReportResponse(BaseModel):
    period: str
    ok: bool
    succeeded: list[str]
    failed: list[str]
    channels_aggregated: int

    @classmethod
    def from_report(cls, report: BatchReport) -> "BatchReportResponse":
        return cls(
            period=report.period,
            ok=report.ok,
            succeeded=report.succeeded,
            failed=report.failed,
            channels_aggregated=report.channels_aggregated,
        )


class CleanupResponse(BaseModel):
    events_deleted: int
    hourly_deleted: int


# ── Endpoints ──────────────────────────────────────────────────────────────────
@router.post("/aggregate-yesterday", response_model=BatchReportResponse)
@limiter.limit(get_role_limit)
async def aggregate_yesterday(
    request: Request,
    current_user: TokenPayload = Depends(run_jobs),
    rollup: RollupEngine = Depends(get_rollup),
):
    with job_context("aggregate-yesterday", user_id=current_user.sub):
        logger.info("jobs.triggered")
        report = await rollup.aggregate_yesterday_for_all_tenants()
    return BatchReportResponse.from_report(report)


@router.post("/aggregate-day", response_model=BatchReportResponse)
@limiter.limit(get_role_limit)
async def aggregate_day(
    request: Request,
    day: date = Query(..., description="UTC day to (re)aggregate"),
    current_user: TokenPayload = Depends(run_jobs),
    rollup: RollupEngine = Depends(get_rollup),
):
    with job_context("aggregate-day", user_id=current_user.sub):
        logger.info("jobs.triggered", day=day.isoformat())
        report = await rollup.aggregate_day_for_all_tenants(day)
    return BatchReportResponse.from_report(report)


@router.post("/aggregate-hour", response_model=BatchReportResponse)
@limiter.limit(get_role_limit)
async def aggregate_hour(
    request: Request,
    hour: datetime | None = Query(default=None, description="Any moment in the hour; default is the last full hour"),
    current_user: TokenPayload = Depends(run_jobs),
    rollup: RollupEngine = Depends(get_rollup),
):
    with job_context("aggregate-hour", user_id=current_user.sub):
        logger.info("jobs.triggered")
        if hour is None:
            report = await rollup.aggregate_last_hour_for_all_tenants()
        else:
            report = await rollup.aggregate_hour_for_all_tenants(hour)
    return BatchReportResponse.from_report(report)


@router.post("/cleanup", response_model=CleanupResponse)
@limiter.limit(get_role_limit)
async def cleanup(
    request: Request,
    current_user: TokenPayload = Depends(run_jobs),
    store=Depends(get_store),
):
    with job_context("cleanup", user_id=current_user.sub):
        logger.info("jobs.triggered")
        result = await run_retention(store)
    return CleanupResponse(**result)
