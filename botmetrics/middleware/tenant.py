"""
Tenant middleware — resolves the calling tenant from the bearer token early.

Tenant resolution itself belongs to the platform's auth service; here we only
read the claims it signed. The result lands on request.state so that:
  1. AuditLogMiddleware can bind tenant context onto every log line
  2. the rate limiter can key limits per tenant + user

Authentication is NOT enforced here; routes do that through
get_current_user / require_permission. A bad token just leaves state empty.
"""

from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from botmetrics.core.config import settings


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.tenant_id = None
        request.state.user_id = None
        request.state.user_role = None

        token = _bearer_token(request)
        if token:
            try:
                claims = jwt.decode(
                    token,
                    settings.JWT_SECRET_KEY,
                    algorithms=[settings.JWT_ALGORITHM],
                )
            except JWTError:
                claims = {}
            request.state.tenant_id = claims.get("tenant_id")
            request.state.user_id = claims.get("sub")
            request.state.user_role = claims.get("role")

        return await call_next(request)
