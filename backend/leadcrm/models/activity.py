"""
Generic audit trail of domain events (logins, lead changes, user changes...).

Rows are only ever inserted and queried, never updated or deleted.
"""
from typing import Optional
from datetime import datetime
from sqlalchemy import String, Text, ForeignKey, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from leadcrm.db.base import Base
from leadcrm.models.base import generate_id, utcnow


class ActivityLogEntry(Base):
    """Append-only audit record. No ``updated`` column on purpose."""
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(15), primary_key=True, default=generate_id)

    # Actor
    user_id: Mapped[Optional[str]] = mapped_column(
        String(15),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="system")

    # Subject entity reference, e.g. ("lead", "<id>")
    subject_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    subject_id: Mapped[Optional[str]] = mapped_column(String(15), nullable=True, index=True)

    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<ActivityLogEntry {self.type} by {self.user_id}>"
