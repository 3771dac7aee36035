"""
User administration: admin-created accounts, allow-listed updates and soft
deletion (termination).
"""
import logging
from typing import Any, Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.errors import ForbiddenError, NotFoundError, ValidationError
from leadcrm.core.permissions import USERS_UPDATE, has
from leadcrm.models.role import Role, UserRole
from leadcrm.models.user import User, UserStatus
from leadcrm.services import activity_log, credentials, tokens

logger = logging.getLogger(__name__)

# Fields any user may change on their own record
PROFILE_FIELDS = ("first_name", "last_name", "phone", "job_title", "timezone", "avatar")
# Fields only callers holding users.update may change
ADMIN_FIELDS = ("status", "role")


async def get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def list_users(
    db: AsyncSession,
    *,
    page: int,
    limit: int,
    status: Optional[str] = None,
    role: Optional[str] = None,
    search: Optional[str] = None,
) -> tuple[list[User], int]:
    query = select(User)

    if status:
        try:
            query = query.where(User.status == UserStatus(status))
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
    else:
        query = query.where(User.status != UserStatus.TERMINATED)

    if role:
        query = query.where(
            User.id.in_(
                select(UserRole.user_id)
                .join(Role, Role.id == UserRole.role_id)
                .where(Role.name == role, UserRole.is_active.is_(True))
            )
        )

    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.email.ilike(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    query = query.order_by(User.last_name.asc(), User.first_name.asc())
    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


async def create_user(db: AsyncSession, actor: User, data: dict[str, Any]) -> User:
    """Admin-created account; the role assignment is part of the same transaction."""
    user = await credentials.create_account(
        db,
        email=data.get("email"),
        password=data.get("password"),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        role_name=data.get("role"),
        assigned_by=actor.id,
        phone=data.get("phone"),
        job_title=data.get("job_title"),
        timezone=data.get("timezone"),
    )
    await activity_log.append(
        db, "user_created", f"User {user.full_name} created",
        user_id=actor.id, subject_type="user", subject_id=user.id,
        details={"email": user.email, "role": data.get("role")},
        category="admin",
    )
    return user


async def update_user(
    db: AsyncSession,
    actor: User,
    actor_permissions: frozenset[str],
    user_id: str,
    changes: dict[str, Any],
) -> User:
    """
    Apply an allow-listed update.

    Users may edit their own profile fields. Status and role changes, and any
    change to someone else, need ``users.update``.
    """
    is_admin = has(actor_permissions, USERS_UPDATE)
    if actor.id != user_id and not is_admin:
        raise ForbiddenError()

    allowed = PROFILE_FIELDS + (ADMIN_FIELDS if is_admin else ())
    if not is_admin and any(field in changes for field in ADMIN_FIELDS):
        raise ForbiddenError()

    applicable = {k: v for k, v in changes.items() if k in allowed and v is not None}
    if not applicable:
        raise ValidationError("No valid fields provided for update")

    user = await get_user(db, user_id)

    new_status = applicable.pop("status", None)
    role_name = applicable.pop("role", None)

    for field, value in applicable.items():
        setattr(user, field, value)

    if role_name is not None:
        role = await credentials.get_role_by_name(db, role_name)
        if role is None:
            raise ValidationError(f"Unknown role: {role_name}")
        await credentials.assign_role(db, user, role, assigned_by=actor.id)

    if new_status is not None:
        try:
            status = UserStatus(new_status)
        except ValueError:
            raise ValidationError(f"Invalid status: {new_status}")
        if status == UserStatus.TERMINATED:
            await _deactivate_access(db, user)
        user.status = status

    await db.flush()
    await activity_log.append(
        db, "user_updated", "User updated",
        user_id=actor.id, subject_type="user", subject_id=user.id,
        details={"fields": sorted(changes.keys())}, category="admin",
    )
    return user


async def _deactivate_access(db: AsyncSession, user: User) -> None:
    await db.execute(
        update(UserRole)
        .where(UserRole.user_id == user.id)
        .values(is_active=False)
    )
    await tokens.revoke_all_for_user(db, user.id)


async def terminate_user(db: AsyncSession, actor: User, user_id: str) -> User:
    """
    Soft delete: status becomes terminated and every role assignment and
    session is deactivated in the caller's transaction.
    """
    user = await get_user(db, user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account")

    user.status = UserStatus.TERMINATED
    await _deactivate_access(db, user)
    await db.flush()

    logger.info("User %s terminated by %s", user.id, actor.id)
    await activity_log.append(
        db, "user_deleted", f"User {user.full_name} deleted",
        user_id=actor.id, subject_type="user", subject_id=user.id,
        details={"email": user.email}, category="admin",
    )
    return user
