"""
Authentication schemas.
"""
from typing import Optional
from pydantic import BaseModel, EmailStr, Field

from leadcrm.schemas.common import SuccessResponse
from leadcrm.schemas.user import UserResponse


class LoginRequest(BaseModel):
    email: str
    password: str
    remember_me: bool = False


class LoginResponse(SuccessResponse):
    """Signed token plus the opaque session secret used for logout."""
    user: UserResponse
    token: str
    session_token: str
    expires_in: int


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    job_title: Optional[str] = Field(None, max_length=200)


class RegisterResponse(SuccessResponse):
    message: str = "Registration successful"
    user_id: str
    verification_required: bool = True


class LogoutRequest(BaseModel):
    session_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class VerifyEmailRequest(BaseModel):
    token: str


class PasswordChange(BaseModel):
    old_password: str
    new_password: str


class PermissionsResponse(SuccessResponse):
    role: Optional[str] = None
    permissions: list[str]
