"""
User administration endpoints.

Permissions:
- List/Get: 'users.view'
- Create: 'users.create'
- Update: 'users.update', or the user themselves for profile fields
- Delete: 'users.delete' (soft delete, status becomes terminated)
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.deps import get_current_user, get_request_timeout, requires
from leadcrm.core.permissions import (
    USERS_CREATE, USERS_DELETE, USERS_VIEW, permissions_for, primary_role
)
from leadcrm.db.base import get_db, run_with_timeout
from leadcrm.models.role import Role
from leadcrm.models.user import User, UserStatus
from leadcrm.schemas.common import MessageResponse, Pagination
from leadcrm.schemas.user import (
    UserCreate, UserUpdate, UserResponse, UserEnvelope, UserListResponse
)
from leadcrm.services import users as user_service

router = APIRouter()


def user_to_response(user: User, role: Optional[Role] = None) -> UserResponse:
    """Convert User model to response schema."""
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        full_name=user.full_name,
        phone=user.phone,
        job_title=user.job_title,
        timezone=user.timezone,
        avatar=user.avatar,
        status=user.status.value if isinstance(user.status, UserStatus) else user.status,
        email_verified=bool(user.email_verified),
        last_login=user.last_login,
        role=role.name if role else None,
        role_display_name=role.display_name if role else None,
        created=user.created,
        updated=user.updated,
    )


async def user_with_role(db: AsyncSession, user: User) -> UserResponse:
    return user_to_response(user, await primary_role(db, user.id))


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status: Optional[str] = Query(None, description="Filter by status"),
    role: Optional[str] = Query(None, description="Filter by role name"),
    search: Optional[str] = Query(None, description="Search name/email"),
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(USERS_VIEW)),
    timeout: float = Depends(get_request_timeout),
):
    """List users. Terminated users are hidden unless asked for by status."""
    users, total = await run_with_timeout(
        user_service.list_users(db, page=page, limit=limit, status=status, role=role, search=search),
        timeout,
    )
    return UserListResponse(
        users=[await user_with_role(db, u) for u in users],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{user_id}", response_model=UserEnvelope)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(USERS_VIEW)),
):
    user = await user_service.get_user(db, user_id)
    return UserEnvelope(user=await user_with_role(db, user))


@router.post("", response_model=UserEnvelope, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(USERS_CREATE)),
    timeout: float = Depends(get_request_timeout),
):
    """Create a user together with their role assignment."""
    user = await run_with_timeout(
        user_service.create_user(db, current_user, user_data.model_dump()),
        timeout,
    )
    return UserEnvelope(user=await user_with_role(db, user))


@router.put("/{user_id}", response_model=UserEnvelope)
async def update_user(
    user_id: str,
    user_data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    timeout: float = Depends(get_request_timeout),
):
    """Update a user. Permission rules are applied per field."""
    actor_permissions = await permissions_for(db, current_user.id)
    user = await run_with_timeout(
        user_service.update_user(
            db, current_user, actor_permissions, user_id,
            user_data.model_dump(exclude_unset=True),
        ),
        timeout,
    )
    return UserEnvelope(user=await user_with_role(db, user))


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(USERS_DELETE)),
    timeout: float = Depends(get_request_timeout),
):
    await run_with_timeout(user_service.terminate_user(db, current_user, user_id), timeout)
    return MessageResponse(message="User deleted successfully")
