"""
User model.
"""
from typing import Optional, TYPE_CHECKING
from enum import Enum
from datetime import datetime
from sqlalchemy import String, Boolean, Integer, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from leadcrm.models.base import BaseModel

if TYPE_CHECKING:
    from leadcrm.models.role import UserRole
    from leadcrm.models.session import UserSession


class UserStatus(str, Enum):
    """Account status. Terminated is the soft-deleted state."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class User(BaseModel):
    """User model for authentication and profile."""
    __tablename__ = "users"

    # Core auth fields
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Profile
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, default="UTC")
    avatar: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[UserStatus] = mapped_column(
        SQLEnum(
            UserStatus,
            name="userstatus",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        default=UserStatus.ACTIVE,
        nullable=False,
        index=True
    )

    # Lockout state
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Email verification
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    email_verification_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Password reset
    password_reset_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    password_reset_expires: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    role_assignments: Mapped[list["UserRole"]] = relationship(
        "UserRole",
        foreign_keys="UserRole.user_id",
        back_populates="user",
        cascade="all, delete-orphan"
    )
    sessions: Mapped[list["UserSession"]] = relationship(
        "UserSession",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User {self.email}>"
