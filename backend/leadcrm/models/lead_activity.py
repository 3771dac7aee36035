"""
Lead activity trail.

Append-only. Scoring and the "days since last contact" field are derived from
these rows.
"""
from typing import Optional, TYPE_CHECKING
from enum import Enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, ForeignKey, DateTime, JSON, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from leadcrm.models.base import BaseModel, utcnow

if TYPE_CHECKING:
    from leadcrm.models.lead import Lead


class ActivityOutcome(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# Activity types written by the engine itself
STAGE_CHANGED = "stage_changed"
CONVERTED = "converted"
SYSTEM_ACTIVITY_TYPES = frozenset({STAGE_CHANGED, CONVERTED})


class LeadActivity(BaseModel):
    """One interaction with, or event on, a lead."""
    __tablename__ = "lead_activities"

    lead_id: Mapped[str] = mapped_column(
        String(15),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outcome: Mapped[ActivityOutcome] = mapped_column(
        SQLEnum(
            ActivityOutcome,
            name="activityoutcome",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        default=ActivityOutcome.NEUTRAL,
        nullable=False
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_action: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    activity_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(
        String(15),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    lead: Mapped["Lead"] = relationship("Lead", back_populates="activities")

    def __repr__(self) -> str:
        return f"<LeadActivity {self.activity_type} on {self.lead_id}>"
