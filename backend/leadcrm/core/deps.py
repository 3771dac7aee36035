"""
Shared FastAPI dependencies: authentication, permission guards and
per-request storage timeout.
"""
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.errors import UnauthenticatedError, ValidationError
from leadcrm.core.permissions import require_permission
from leadcrm.db.base import get_db
from leadcrm.models.base import utcnow
from leadcrm.models.session import UserSession
from leadcrm.models.user import User, UserStatus
from leadcrm.services import tokens

security = HTTPBearer(auto_error=False)


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> UserSession:
    """
    Resolve the bearer token to its live session row.

    The signature and expiry are checked first, then the session referenced
    by the ``sid`` claim must still be active and unexpired.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Authentication required")

    claims = tokens.verify(credentials.credentials)
    session = await tokens.get_active_session(db, claims.get("sid"))
    if session is None or session.user_id != claims["sub"]:
        raise UnauthenticatedError("Session expired or revoked")

    session.last_activity = utcnow()
    return session


async def get_current_user(
    session: UserSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get the active user behind the current session."""
    user = await db.get(User, session.user_id)
    if user is None or user.status != UserStatus.ACTIVE:
        raise UnauthenticatedError("User not found or inactive")
    return user


def requires(permission: str) -> Callable:
    """
    Build a dependency that enforces ``permission`` for the current user.

    Role assignments are re-read from the database on every request. The
    dependency resolves to the caller's permission set.
    """
    async def guard(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ) -> frozenset[str]:
        return await require_permission(db, current_user, permission)

    return guard


def get_request_timeout(
    x_request_timeout: Optional[float] = Header(None, alias="X-Request-Timeout"),
) -> float:
    """Storage timeout for this request in seconds, capped by configuration."""
    if x_request_timeout is None:
        return settings.STORAGE_TIMEOUT_SECONDS
    if x_request_timeout <= 0:
        raise ValidationError("X-Request-Timeout must be a positive number of seconds")
    return min(x_request_timeout, settings.MAX_STORAGE_TIMEOUT_SECONDS)


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
