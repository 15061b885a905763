"""
Access log middleware — one structured entry per request.

Binds request_id and tenant_id into structlog's context variables for the
lifetime of the request, so every log line emitted by the recorder, the
calculator or a job trigger carries them without passing them around.

Logged per request: method, path, status_code, duration_ms, tenant/user/role
(set by TenantMiddleware) and client_ip. Exports are logged at warning level
because they move tenant data out of the platform.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from botmetrics.core.logging import get_logger

logger = get_logger(__name__)

SKIP_PATHS = {"/health", "/health/live", "/health/ready", "/docs", "/redoc", "/openapi.json"}
EXPORT_PATH_SUFFIX = "/analytics/export"


class AuditLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            tenant_id=getattr(request.state, "tenant_id", None),
        )

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        response.headers["X-Request-ID"] = request_id

        if request.url.path in SKIP_PATHS:
            return response

        if response.status_code >= 400 or request.url.path.endswith(EXPORT_PATH_SUFFIX):
            log_fn = logger.warning
        else:
            log_fn = logger.info

        log_fn(
            "http.request",
            method=request.method,
            path=request.url.path,
            query=str(request.query_params) or None,
            status_code=response.status_code,
            duration_ms=duration_ms,
            user_id=getattr(request.state, "user_id", None),
            user_role=getattr(request.state, "user_role", None),
            client_ip=request.client.host if request.client else None,
        )
        return response
