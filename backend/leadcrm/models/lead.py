"""
Lead models for the sales pipeline.

Leads are prospective contacts tracked through an ordered, configurable set of
stages (``lead_statuses``). Their ``score`` is derived from the activity trail
and is never edited directly; ``status`` only moves through the pipeline
engine in ``leadcrm.services.lead_pipeline``.
"""
from typing import Optional, TYPE_CHECKING
from enum import Enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import (
    String, Text, Integer, Boolean, Numeric, ForeignKey, DateTime, JSON, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from leadcrm.models.base import BaseModel

if TYPE_CHECKING:
    from leadcrm.models.user import User
    from leadcrm.models.lead_activity import LeadActivity


class LeadTemperature(str, Enum):
    """Coarse interest classification, independent of the numeric score."""
    COLD = "cold"
    WARM = "warm"
    HOT = "hot"


class LeadPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class LeadStatus(BaseModel):
    """A configured pipeline stage. Ordering comes from ``sort_order``."""
    __tablename__ = "lead_statuses"

    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<LeadStatus {self.slug} #{self.sort_order}>"


class LeadSource(BaseModel):
    """Where a lead came from (website form, referral, ...)."""
    __tablename__ = "lead_sources"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<LeadSource {self.name}>"


class Lead(BaseModel):
    """
    Lead model.

    Email is intentionally not unique: several inbound leads for the same
    person from different campaigns are tracked separately.
    """
    __tablename__ = "leads"

    # Contact fields
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Qualification fields
    industry: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    company_size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    annual_revenue: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    budget_range: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    decision_maker: Mapped[bool] = mapped_column(Boolean, default=False)

    lead_source_id: Mapped[Optional[str]] = mapped_column(
        String(15),
        ForeignKey("lead_sources.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Pipeline state
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="new", index=True)
    temperature: Mapped[LeadTemperature] = mapped_column(
        SQLEnum(
            LeadTemperature,
            name="leadtemperature",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        default=LeadTemperature.COLD,
        nullable=False,
        index=True
    )
    priority: Mapped[LeadPriority] = mapped_column(
        SQLEnum(
            LeadPriority,
            name="leadpriority",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        default=LeadPriority.MEDIUM,
        nullable=False
    )
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Ownership
    assigned_to: Mapped[Optional[str]] = mapped_column(
        String(15),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    created_by: Mapped[Optional[str]] = mapped_column(
        String(15),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    next_follow_up: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_contacted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Conversion tracking
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    conversion_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    conversion_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    converted_contact_id: Mapped[Optional[str]] = mapped_column(
        String(15),
        ForeignKey("contacts.id", ondelete="SET NULL"),
        nullable=True
    )

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    source: Mapped[Optional["LeadSource"]] = relationship("LeadSource", foreign_keys=[lead_source_id])
    assignee: Mapped[Optional["User"]] = relationship("User", foreign_keys=[assigned_to])
    activities: Mapped[list["LeadActivity"]] = relationship(
        "LeadActivity",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Lead {self.full_name} ({self.status})>"
