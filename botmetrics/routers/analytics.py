"""
Analytics router — tenant-scoped metric reads and exports.

Permission matrix:
  GET /analytics/overview    → viewer and above
  GET /analytics/trends      → viewer and above
  GET /analytics/channels    → viewer and above
  GET /analytics/peak-hours  → viewer and above
  GET /analytics/costs       → viewer and above
  GET /analytics/usage       → viewer and above
  GET /analytics/export      → analyst+ (Permission.EXPORT_DATA)

The tenant always comes from the token. Every endpoint is a pure read.
"""

import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response

from botmetrics.core.config import settings
from botmetrics.core.limiter import get_role_limit, limiter
from botmetrics.core.logging import get_logger
from botmetrics.core.security import Permission, TokenPayload, require_permission
from botmetrics.routers.deps import DateRange, get_calculator, get_date_range
from botmetrics.schemas.metrics import (
    ChannelBreakdownRow,
    CostBreakdown,
    OverviewMetrics,
    PeakHourBucket,
    TrendPoint,
    UsageSummary,
)
from botmetrics.services.calculator import InvalidDateRangeError, MetricsCalculator

router = APIRouter()
logger = get_logger(__name__)

read_metrics = require_permission(Permission.READ_METRICS)


@router.get("/overview", response_model=OverviewMetrics, summary="Headline metrics for a period")
@limiter.limit(get_role_limit)
async def overview(
    request: Request,
    period: DateRange = Depends(get_date_range),
    current_user: TokenPayload = Depends(read_metrics),
    calculator: MetricsCalculator = Depends(get_calculator),
):
    return await calculator.get_overview(current_user.tenant_id, period.start, period.end)


@router.get("/trends", response_model=list[TrendPoint], summary="Daily series (no gap filling)")
@limiter.limit(get_role_limit)
async def trends(
    request: Request,
    channel_id: str | None = Query(default=None),
    period: DateRange = Depends(get_date_range),
    current_user: TokenPayload = Depends(read_metrics),
    calculator: MetricsCalculator = Depends(get_calculator),
):
    return await calculator.get_trends(
        current_user.tenant_id, period.start, period.end, channel_id=channel_id
    )


@router.get("/channels", response_model=list[ChannelBreakdownRow], summary="Per-channel breakdown")
@limiter.limit(get_role_limit)
async def channels(
    request: Request,
    period: DateRange = Depends(get_date_range),
    current_user: TokenPayload = Depends(read_metrics),
    calculator: MetricsCalculator = Depends(get_calculator),
):
    return await calculator.get_channel_breakdown(current_user.tenant_id, period.start, period.end)


@router.get("/peak-hours", response_model=list[PeakHourBucket], summary="Messages by hour of day")
@limiter.limit(get_role_limit)
async def peak_hours(
    request: Request,
    period: DateRange = Depends(get_date_range),
    current_user: TokenPayload = Depends(read_metrics),
    calculator: MetricsCalculator = Depends(get_calculator),
):
    return await calculator.get_peak_hours(current_user.tenant_id, period.start, period.end)


@router.get("/costs", response_model=CostBreakdown, summary="Cost by channel and model")
@limiter.limit(get_role_limit)
async def costs(
    request: Request,
    period: DateRange = Depends(get_date_range),
    current_user: TokenPayload = Depends(read_metrics),
    calculator: MetricsCalculator = Depends(get_calculator),
):
    return await calculator.get_cost_breakdown(current_user.tenant_id, period.start, period.end)


@router.get("/usage", response_model=UsageSummary, summary="Token and spend summary")
@limiter.limit(get_role_limit)
async def usage(
    request: Request,
    period: DateRange = Depends(get_date_range),
    current_user: TokenPayload = Depends(read_metrics),
    calculator: MetricsCalculator = Depends(get_calculator),
):
    return await calculator.get_usage_summary(current_user.tenant_id, period.start, period.end)


@router.get("/export", summary="Download daily aggregates as CSV or JSON (analyst+ only)")
@limiter.limit(settings.RATE_LIMIT_EXPORT)
async def export_data(
    request: Request,
    format: str = Query(default="csv", pattern="^(csv|json)$"),
    period: DateRange = Depends(get_date_range),
    current_user: TokenPayload = Depends(require_permission(Permission.EXPORT_DATA)),
    calculator: MetricsCalculator = Depends(get_calculator),
):
    tenant_id = current_user.tenant_id
    filename = f"analytics_{period.start.isoformat()}_{period.end.isoformat()}.{format}"

    try:
        if format == "csv":
            body = await calculator.export_csv(tenant_id, period.start, period.end)
            media_type = "text/csv; charset=utf-8"
        else:
            payload = await calculator.export_json(tenant_id, period.start, period.end)
            body = json.dumps(payload, indent=2)
            media_type = "application/json; charset=utf-8"
    except InvalidDateRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.warning(
        "analytics.export_completed",
        user_id=current_user.sub,
        tenant_id=tenant_id,
        format=format,
    )
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
