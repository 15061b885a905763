"""
Rate limiting via slowapi (Starlette-compatible Limits wrapper).

Strategy:
  - Global fallback: 30 requests/minute for unauthenticated endpoints
  - Per-role limits: viewer=60, analyst=200, admin=500 req/min
  - Exports get a fixed, much lower limit — they scan the whole range
  - Key function: tenant_id + user_id (+ role) → fair per-user limiting

Usage in routes:
    @router.get("/overview")
    @limiter.limit(get_role_limit)
    async def overview(request: Request, ...):
        ...
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from botmetrics.core.config import settings
from botmetrics.core.logging import get_logger

logger = get_logger(__name__)


def get_tenant_user_key(request: Request) -> str:
    """
    Rate limit key: combines tenant + user for fair multi-tenant limiting.
    Falls back to IP address for unauthenticated requests.
    """
    tenant_id = getattr(request.state, "tenant_id", None)
    user_id = getattr(request.state, "user_id", None)
    role = getattr(request.state, "user_role", None)

    if tenant_id and user_id:
        return f"tenant:{tenant_id}:user:{user_id}:role:{role}"

    return get_remote_address(request)


def get_role_limit(key: str) -> str:
    """
    Dynamic rate limit resolver — returns different limits based on user role.
    slowapi hands it the rate limit key, so the role is read back out of it.
    """
    role = key.rsplit(":role:", 1)[1] if ":role:" in key else None

    limit_map = {
        "viewer": settings.RATE_LIMIT_VIEWER,
        "analyst": settings.RATE_LIMIT_ANALYST,
        "admin": settings.RATE_LIMIT_ADMIN,
        "super_admin": settings.RATE_LIMIT_ADMIN,
    }

    resolved = limit_map.get(role, settings.RATE_LIMIT_DEFAULT)
    logger.debug("rate_limit.resolved", role=role, limit=resolved)
    return resolved


limiter = Limiter(
    key_func=get_tenant_user_key,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)
