"""
Session/token issuer.

A login produces two things: a signed JWT carrying the user id and the
session id (``sid``), and a ``user_sessions`` row holding a separate random
secret. ``verify`` only checks the signature and expiry; revocation lives in
the session table and is checked with ``is_session_active``.
"""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.errors import AuthStorageError
from leadcrm.core.security import create_access_token, decode_token, generate_secret_token
from leadcrm.models.base import utcnow, as_utc
from leadcrm.models.session import UserSession
from leadcrm.models.user import User

logger = logging.getLogger(__name__)


def session_lifetime(remember_me: bool) -> timedelta:
    if remember_me:
        return timedelta(days=settings.REMEMBER_ME_EXPIRE_DAYS)
    return timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)


async def issue(
    db: AsyncSession,
    user: User,
    remember_me: bool = False,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> tuple[str, UserSession]:
    """
    Create a session row and the signed token that references it.

    Raises AuthStorageError if the session cannot be persisted; no token is
    handed out in that case.
    """
    lifetime = session_lifetime(remember_me)
    session = UserSession(
        user_id=user.id,
        session_token=generate_secret_token(32),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
        expires_at=utcnow() + lifetime,
        last_activity=utcnow(),
        is_active=True,
    )
    try:
        db.add(session)
        await db.flush()
    except SQLAlchemyError:
        logger.exception("Failed to persist session for user %s", user.id)
        raise AuthStorageError()

    token = create_access_token(
        subject=user.id,
        expires_delta=lifetime,
        additional_claims={"sid": session.id, "email": user.email},
    )
    return token, session


def verify(token: str) -> dict:
    """
    Validate signature and expiry and return the claim set.

    Raises TokenExpiredError or MalformedTokenError. Does not consult the
    session table.
    """
    return decode_token(token)


async def get_active_session(db: AsyncSession, session_id: str) -> Optional[UserSession]:
    result = await db.execute(select(UserSession).where(UserSession.id == session_id))
    session = result.scalar_one_or_none()
    if session is None or not session.is_active:
        return None
    if as_utc(session.expires_at) <= utcnow():
        return None
    return session


async def is_session_active(db: AsyncSession, session_id: Optional[str]) -> bool:
    """True when the session exists, is not revoked and has not expired."""
    if not session_id:
        return False
    return await get_active_session(db, session_id) is not None


async def revoke(db: AsyncSession, session_token: str) -> None:
    """Deactivate the session holding this secret. Revoking twice is a no-op."""
    await db.execute(
        update(UserSession)
        .where(UserSession.session_token == session_token)
        .values(is_active=False)
    )


async def revoke_session_id(db: AsyncSession, session_id: str) -> None:
    await db.execute(
        update(UserSession)
        .where(UserSession.id == session_id)
        .values(is_active=False)
    )


async def revoke_all_for_user(db: AsyncSession, user_id: str) -> None:
    """Deactivate every session of a user in a single statement."""
    await db.execute(
        update(UserSession)
        .where(UserSession.user_id == user_id)
        .values(is_active=False)
    )
