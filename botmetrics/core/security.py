"""
Security core: JWT validation and role-based permissions.

Architecture:
  - Tokens are issued by the platform's auth service and carried in the
    Authorization header; this service only verifies them
  - The tenant a request acts on always comes from the token, never from input
  - Roles are hierarchical: super_admin > admin > analyst > viewer
  - Permissions are additive — higher roles inherit all lower permissions
"""

from datetime import datetime
from enum import Enum
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from botmetrics.core.config import settings
from botmetrics.core.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer()


# ── Roles & Permissions ────────────────────────────────────────────────────────
class Role(str, Enum):
    VIEWER = "viewer"
    ANALYST = "analyst"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Permission(str, Enum):
    READ_METRICS = "analytics:read"
    RECORD_EVENTS = "analytics:record"
    EXPORT_DATA = "analytics:export"
    RUN_JOBS = "analytics:run_jobs"


# Hierarchical permission mapping: higher roles include all lower permissions
ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.VIEWER: {
        Permission.READ_METRICS,
    },
    Role.ANALYST: {
        Permission.READ_METRICS,
        Permission.RECORD_EVENTS,
        Permission.EXPORT_DATA,
    },
    Role.ADMIN: {
        Permission.READ_METRICS,
        Permission.RECORD_EVENTS,
        Permission.EXPORT_DATA,
    },
    # Batch jobs span every tenant, so only platform operators may trigger them.
    Role.SUPER_ADMIN: {p for p in Permission},
}


def has_permission(role: Role, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, set())


# ── Token schema ───────────────────────────────────────────────────────────────
class TokenPayload(BaseModel):
    sub: str           # user or service id
    tenant_id: str
    role: Role
    jti: str
    exp: datetime
    iat: datetime
    token_type: str    # only "access" tokens are accepted


# ── Token validation ───────────────────────────────────────────────────────────
def decode_token(token: str) -> TokenPayload:
    """Decode and validate a JWT. Raises HTTPException on any failure."""
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)

    except ExpiredSignatureError:
        logger.warning("auth.token_expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError as e:
        logger.warning("auth.token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ── FastAPI dependencies ───────────────────────────────────────────────────────
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> TokenPayload:
    """
    Dependency: validates Bearer token and returns the decoded payload.
    Inject this into any route that requires authentication.
    """
    payload = decode_token(credentials.credentials)

    if payload.token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Only access tokens can be used for API access",
        )
    return payload


def require_permission(permission: Permission):
    """
    Dependency factory: raises 403 if the user's role lacks a specific permission.

    Usage:
        @router.get("/export")
        async def export(user = Depends(require_permission(Permission.EXPORT_DATA))):
            ...
    """
    async def _check(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
        if not has_permission(current_user.role, permission):
            logger.warning(
                "auth.permission_denied",
                user_id=current_user.sub,
                user_role=current_user.role,
                required_permission=permission.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{permission.value}' required",
            )
        return current_user

    return _check
