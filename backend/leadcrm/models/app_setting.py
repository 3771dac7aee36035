"""
App Setting model - global application settings.
"""
from typing import Optional
from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column
from leadcrm.models.base import BaseModel


class AppSetting(BaseModel):
    """
    Global key/value settings edited out-of-band by administrators.

    The ``lead_pipeline`` key holds scoring weights, decay half-life and
    conversion rules for the pipeline engine.
    """
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<AppSetting {self.key}>"
