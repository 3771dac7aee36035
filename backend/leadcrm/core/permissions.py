"""Permission resolution and enforcement.

Permission strings are opaque capability tokens such as ``leads.create``.
Only exact matches and the global ``*`` grant access.
"""
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from leadcrm.core.errors import ForbiddenError
from leadcrm.models.base import utcnow
from leadcrm.models.role import Role, UserRole
from leadcrm.models.user import User

WILDCARD = "*"

# Known permission strings
LEADS_VIEW = "leads.view"
LEADS_CREATE = "leads.create"
LEADS_UPDATE = "leads.update"
LEADS_DELETE = "leads.delete"
LEADS_CONVERT = "leads.convert"
CONTACTS_VIEW = "contacts.view"
CONTACTS_CREATE = "contacts.create"
CONTACTS_UPDATE = "contacts.update"
CONTACTS_DELETE = "contacts.delete"
USERS_VIEW = "users.view"
USERS_CREATE = "users.create"
USERS_UPDATE = "users.update"
USERS_DELETE = "users.delete"
ACTIVITIES_VIEW = "activities.view"

ALL_PERMISSIONS = (
    LEADS_VIEW, LEADS_CREATE, LEADS_UPDATE, LEADS_DELETE, LEADS_CONVERT,
    CONTACTS_VIEW, CONTACTS_CREATE, CONTACTS_UPDATE, CONTACTS_DELETE,
    USERS_VIEW, USERS_CREATE, USERS_UPDATE, USERS_DELETE,
    ACTIVITIES_VIEW,
)


async def get_active_roles(db: AsyncSession, user_id: str) -> list[Role]:
    """Roles from the user's currently active, unexpired assignments, newest first."""
    now = utcnow()
    result = await db.execute(
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(
            UserRole.user_id == user_id,
            UserRole.is_active.is_(True),
            Role.is_active.is_(True),
            or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
        )
        .order_by(UserRole.assigned_at.desc())
    )
    return list(result.scalars().all())


async def permissions_for(db: AsyncSession, user_id: str) -> frozenset[str]:
    """
    Union of permission strings over all active role assignments.

    More than one active assignment should not exist, but is tolerated.
    A ``*`` anywhere collapses the set to ``{"*"}``.
    """
    permissions: set[str] = set()
    for role in await get_active_roles(db, user_id):
        for permission in role.permissions or []:
            if permission == WILDCARD:
                return frozenset({WILDCARD})
            permissions.add(permission)
    return frozenset(permissions)


def has(permission_set: Iterable[str], requested: str) -> bool:
    """True iff ``requested`` or the global wildcard is in the set."""
    permission_set = permission_set if isinstance(permission_set, (set, frozenset)) else set(permission_set)
    return WILDCARD in permission_set or requested in permission_set


async def require_permission(db: AsyncSession, user: User, permission: str) -> frozenset[str]:
    """
    Guard run before any mutation. Re-reads role assignments from the store.

    Raises ForbiddenError when the permission is missing.
    """
    permission_set = await permissions_for(db, user.id)
    if not has(permission_set, permission):
        raise ForbiddenError()
    return permission_set


async def primary_role(db: AsyncSession, user_id: str) -> Optional[Role]:
    """The authoritative role: the most recently assigned active one."""
    roles = await get_active_roles(db, user_id)
    return roles[0] if roles else None
