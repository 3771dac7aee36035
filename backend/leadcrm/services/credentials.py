"""
Credential store operations: login with lockout, registration, password
reset and email verification.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from math import ceil
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.errors import (
    ConflictError, LockoutError, MissingFieldError, UnauthenticatedError, ValidationError
)
from leadcrm.core.security import generate_secret_token, get_password_hash, verify_password
from leadcrm.models.base import utcnow, as_utc
from leadcrm.models.role import Role, UserRole
from leadcrm.models.session import UserSession
from leadcrm.models.user import User, UserStatus
from leadcrm.services import activity_log, tokens

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If an account exists, a password reset email has been sent"


@dataclass
class LoginResult:
    user: User
    token: str
    session: UserSession


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


def validate_password_strength(password: str) -> None:
    if len(password) < settings.MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters long"
        )


async def authenticate(
    db: AsyncSession,
    email: Optional[str],
    password: Optional[str],
    remember_me: bool = False,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> LoginResult:
    """
    Check credentials and issue a session.

    Failed attempts are counted on the user row and committed before the
    error is raised. Reaching MAX_LOGIN_ATTEMPTS locks the account for
    LOCKOUT_MINUTES; while locked, every attempt is refused without looking
    at the password.
    """
    if not email:
        raise MissingFieldError("email")
    if not password:
        raise MissingFieldError("password")

    user = await get_user_by_email(db, email)
    if user is None or user.status != UserStatus.ACTIVE:
        raise UnauthenticatedError()

    now = utcnow()
    locked_until = as_utc(user.locked_until)
    if locked_until is not None:
        if locked_until > now:
            minutes = ceil((locked_until - now).total_seconds() / 60)
            raise LockoutError(f"Account locked. Try again in {minutes} minutes")
        # Lock elapsed: start a fresh window
        user.login_attempts = 0
        user.locked_until = None

    if not verify_password(password, user.password_hash):
        user.login_attempts = (user.login_attempts or 0) + 1
        locked = user.login_attempts >= settings.MAX_LOGIN_ATTEMPTS
        if locked:
            user.locked_until = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
            logger.warning("Account %s locked after %s failed attempts", user.id, user.login_attempts)
        await activity_log.append(
            db, "login_failed", "Failed login attempt",
            user_id=user.id, subject_type="user", subject_id=user.id,
            details={"attempts": user.login_attempts, "locked": locked},
            ip_address=ip_address, category="security",
        )
        await db.commit()
        if locked:
            raise LockoutError()
        raise UnauthenticatedError()

    user.login_attempts = 0
    user.locked_until = None
    user.last_login = now

    token, session = await tokens.issue(
        db, user, remember_me=remember_me, ip_address=ip_address, user_agent=user_agent
    )

    await activity_log.append(
        db, "user_login", "User logged in",
        user_id=user.id, subject_type="user", subject_id=user.id,
        details={"ip_address": ip_address, "user_agent": user_agent},
        ip_address=ip_address, category="security",
    )
    logger.info("User %s logged in", user.id)
    return LoginResult(user=user, token=token, session=session)


async def assign_role(
    db: AsyncSession,
    user: User,
    role: Role,
    assigned_by: Optional[str] = None,
) -> UserRole:
    """
    Make ``role`` the user's single active assignment.

    Previous assignments are deactivated in the same flush.
    """
    result = await db.execute(
        select(UserRole).where(UserRole.user_id == user.id, UserRole.is_active.is_(True))
    )
    for assignment in result.scalars().all():
        assignment.is_active = False

    assignment = UserRole(
        user_id=user.id,
        role_id=role.id,
        assigned_by=assigned_by,
        assigned_at=utcnow(),
        is_active=True,
    )
    db.add(assignment)
    await db.flush()
    return assignment


async def get_role_by_name(db: AsyncSession, name: str) -> Optional[Role]:
    result = await db.execute(select(Role).where(Role.name == name, Role.is_active.is_(True)))
    return result.scalar_one_or_none()


async def create_account(
    db: AsyncSession,
    *,
    email: Optional[str],
    password: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
    role_name: Optional[str] = None,
    assigned_by: Optional[str] = None,
    **profile,
) -> User:
    """
    Insert a user row together with its role assignment.

    Both writes share the caller's transaction; if either fails nothing is
    kept.
    """
    for field, value in (
        ("email", email), ("password", password),
        ("first_name", first_name), ("last_name", last_name),
    ):
        if not value:
            raise MissingFieldError(field)
    validate_password_strength(password)

    if await get_user_by_email(db, email) is not None:
        raise ConflictError("User already exists with this email")

    role_name = role_name or settings.DEFAULT_ROLE
    role = await get_role_by_name(db, role_name)
    if role is None:
        raise ValidationError(f"Unknown role: {role_name}")

    user = User(
        email=email.strip().lower(),
        password_hash=get_password_hash(password),
        first_name=first_name,
        last_name=last_name,
        status=UserStatus.ACTIVE,
        login_attempts=0,
        email_verified=False,
        email_verification_token=generate_secret_token(32),
        **{k: v for k, v in profile.items() if v is not None},
    )
    db.add(user)
    await db.flush()

    await assign_role(db, user, role, assigned_by=assigned_by or user.id)
    return user


async def register(
    db: AsyncSession,
    *,
    email: Optional[str],
    password: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
    ip_address: Optional[str] = None,
    **profile,
) -> User:
    """Self-service sign-up with the default role."""
    user = await create_account(
        db,
        email=email,
        password=password,
        first_name=first_name,
        last_name=last_name,
        **profile,
    )
    await activity_log.append(
        db, "user_registered", "User registered",
        user_id=user.id, subject_type="user", subject_id=user.id,
        details={"email": user.email}, ip_address=ip_address, category="security",
    )
    return user


async def request_password_reset(db: AsyncSession, email: Optional[str]) -> str:
    """
    Store a reset token for an active account.

    Returns the same message whether or not the account exists.
    """
    if not email:
        raise MissingFieldError("email")

    user = await get_user_by_email(db, email)
    if user is None or user.status != UserStatus.ACTIVE:
        return RESET_REQUESTED_MESSAGE

    user.password_reset_token = generate_secret_token(32)
    user.password_reset_expires = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    await db.flush()

    # Delivery is out of band; the token is only logged at debug level.
    logger.debug("Password reset token issued for user %s", user.id)
    await activity_log.append(
        db, "password_reset_requested", "Password reset requested",
        user_id=user.id, subject_type="user", subject_id=user.id, category="security",
    )
    return RESET_REQUESTED_MESSAGE


async def reset_password(db: AsyncSession, token: Optional[str], new_password: Optional[str]) -> User:
    """Set a new password from a valid reset token and revoke every session."""
    if not token:
        raise MissingFieldError("token")
    if not new_password:
        raise MissingFieldError("new_password")
    validate_password_strength(new_password)

    result = await db.execute(
        select(User).where(
            User.password_reset_token == token,
            User.status == UserStatus.ACTIVE,
        )
    )
    user = result.scalar_one_or_none()
    expires = as_utc(user.password_reset_expires) if user else None
    if user is None or expires is None or expires <= utcnow():
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = get_password_hash(new_password)
    user.password_reset_token = None
    user.password_reset_expires = None
    user.login_attempts = 0
    user.locked_until = None
    await db.flush()

    await tokens.revoke_all_for_user(db, user.id)
    await activity_log.append(
        db, "password_reset", "Password reset successfully",
        user_id=user.id, subject_type="user", subject_id=user.id, category="security",
    )
    return user


async def change_password(
    db: AsyncSession,
    user: User,
    old_password: Optional[str],
    new_password: Optional[str],
) -> None:
    if not old_password:
        raise MissingFieldError("old_password")
    if not new_password:
        raise MissingFieldError("new_password")
    if not verify_password(old_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    validate_password_strength(new_password)

    user.password_hash = get_password_hash(new_password)
    await db.flush()
    await activity_log.append(
        db, "password_changed", "Password changed",
        user_id=user.id, subject_type="user", subject_id=user.id, category="security",
    )


async def verify_email(db: AsyncSession, token: Optional[str]) -> User:
    if not token:
        raise MissingFieldError("token")

    result = await db.execute(
        select(User).where(
            User.email_verification_token == token,
            User.email_verified.is_(False),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise ValidationError("Invalid verification token")

    user.email_verified = True
    user.email_verification_token = None
    await db.flush()

    await activity_log.append(
        db, "email_verified", "Email verified successfully",
        user_id=user.id, subject_type="user", subject_id=user.id, category="security",
    )
    return user
