"""
Authentication endpoints.

Endpoints:
- POST /login - Email/password login, returns a JWT and a session secret
- POST /register - Self-service sign-up with the default role
- POST /logout - Revoke a session
- GET /me - Current user with role and permissions
- GET /permissions - Resolved permission list
- POST /change-password - Change own password
- POST /forgot-password - Request a reset token (no account enumeration)
- POST /reset-password - Set a new password from a reset token
- POST /verify-email - Confirm an email address
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.deps import (
    get_client_ip, get_current_session, get_current_user, get_request_timeout, security
)
from leadcrm.core.errors import AuthError, ForbiddenError
from leadcrm.core.permissions import permissions_for, primary_role
from leadcrm.db.base import get_db, run_with_timeout
from leadcrm.models.session import UserSession
from leadcrm.models.user import User
from leadcrm.schemas.auth import (
    LoginRequest, LoginResponse, RegisterRequest, RegisterResponse, LogoutRequest,
    ForgotPasswordRequest, ResetPasswordRequest, VerifyEmailRequest, PasswordChange,
    PermissionsResponse
)
from leadcrm.schemas.common import MessageResponse, SuccessResponse
from leadcrm.schemas.user import CurrentUserResponse
from leadcrm.api.v1.users import user_to_response
from leadcrm.services import activity_log, credentials, tokens

logger = logging.getLogger(__name__)

router = APIRouter()


class CurrentUserEnvelope(SuccessResponse):
    user: CurrentUserResponse


@router.post("/login", response_model=LoginResponse)
async def login(
    login_data: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    timeout: float = Depends(get_request_timeout),
):
    """Authenticate user with email/password."""
    result = await run_with_timeout(
        credentials.authenticate(
            db,
            login_data.email,
            login_data.password,
            remember_me=login_data.remember_me,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        ),
        timeout,
    )
    role = await primary_role(db, result.user.id)
    return LoginResponse(
        user=user_to_response(result.user, role),
        token=result.token,
        session_token=result.session.session_token,
        expires_in=int(tokens.session_lifetime(login_data.remember_me).total_seconds()),
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    timeout: float = Depends(get_request_timeout),
):
    """Register a new user."""
    if not settings.ALLOW_SELF_REGISTRATION:
        raise ForbiddenError("Self-registration is disabled")

    user = await run_with_timeout(
        credentials.register(
            db,
            email=user_data.email,
            password=user_data.password,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            phone=user_data.phone,
            job_title=user_data.job_title,
            ip_address=get_client_ip(request),
        ),
        timeout,
    )
    return RegisterResponse(user_id=user.id)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    logout_data: Optional[LogoutRequest] = None,
    auth: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
):
    """
    Revoke the given session secret, or the bearer token's session.

    Always succeeds, including for sessions that are already revoked.
    """
    user_id = None
    if logout_data and logout_data.session_token:
        await tokens.revoke(db, logout_data.session_token)
    elif auth is not None:
        try:
            claims = tokens.verify(auth.credentials)
        except AuthError:
            claims = None
        if claims and claims.get("sid"):
            await tokens.revoke_session_id(db, claims["sid"])
            user_id = claims["sub"]

    if user_id:
        await activity_log.append(
            db, "user_logout", "User logged out",
            user_id=user_id, subject_type="user", subject_id=user_id,
            ip_address=get_client_ip(request), category="security",
        )
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=CurrentUserEnvelope)
async def get_me(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Get the authenticated user."""
    role = await primary_role(db, current_user.id)
    permission_set = await permissions_for(db, current_user.id)
    base = user_to_response(current_user, role)
    return CurrentUserEnvelope(
        user=CurrentUserResponse(**base.model_dump(), permissions=sorted(permission_set))
    )


@router.get("/permissions", response_model=PermissionsResponse)
async def get_permissions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    role = await primary_role(db, current_user.id)
    permission_set = await permissions_for(db, current_user.id)
    return PermissionsResponse(
        role=role.name if role else None,
        permissions=sorted(permission_set),
    )


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    password_data: PasswordChange,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    session: UserSession = Depends(get_current_session),
    timeout: float = Depends(get_request_timeout),
):
    """Change own password. Other sessions stay valid."""
    await run_with_timeout(
        credentials.change_password(
            db, current_user, password_data.old_password, password_data.new_password
        ),
        timeout,
    )
    logger.info("User %s changed password from session %s", current_user.id, session.id)
    return MessageResponse(message="Password changed successfully")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    request_data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    timeout: float = Depends(get_request_timeout),
):
    """Request a password reset. The answer is the same whether or not the account exists."""
    message = await run_with_timeout(
        credentials.request_password_reset(db, request_data.email),
        timeout,
    )
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    reset_data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    timeout: float = Depends(get_request_timeout),
):
    await run_with_timeout(
        credentials.reset_password(db, reset_data.token, reset_data.new_password),
        timeout,
    )
    return MessageResponse(message="Password reset successfully")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    verify_data: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
    timeout: float = Depends(get_request_timeout),
):
    await run_with_timeout(credentials.verify_email(db, verify_data.token), timeout)
    return MessageResponse(message="Email verified successfully")
