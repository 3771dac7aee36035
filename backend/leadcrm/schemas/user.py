"""
User schemas.
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from leadcrm.schemas.common import Pagination, SuccessResponse


class UserResponse(BaseModel):
    """User record without credential fields."""
    id: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    phone: Optional[str] = None
    job_title: Optional[str] = None
    timezone: Optional[str] = None
    avatar: Optional[str] = None
    status: str
    email_verified: bool = False
    last_login: Optional[datetime] = None
    role: Optional[str] = None
    role_display_name: Optional[str] = None
    created: datetime
    updated: datetime

    class Config:
        from_attributes = True


class CurrentUserResponse(UserResponse):
    permissions: list[str] = []


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    job_title: Optional[str] = Field(None, max_length=200)
    timezone: Optional[str] = Field(None, max_length=100)
    role: Optional[str] = None


class UserUpdate(BaseModel):
    """Allow-listed fields. ``status`` and ``role`` need users.update."""
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    job_title: Optional[str] = Field(None, max_length=200)
    timezone: Optional[str] = Field(None, max_length=100)
    avatar: Optional[str] = Field(None, max_length=500)
    status: Optional[str] = None
    role: Optional[str] = None


class UserEnvelope(SuccessResponse):
    user: UserResponse


class UserListResponse(SuccessResponse):
    users: list[UserResponse]
    pagination: Pagination
