"""
Activity log schemas.
"""
from typing import Any, Optional
from datetime import datetime
from pydantic import BaseModel

from leadcrm.schemas.common import SuccessResponse


class ActivityLogResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    type: str
    title: str
    description: Optional[str] = None
    category: str
    subject_type: Optional[str] = None
    subject_id: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    created: datetime

    class Config:
        from_attributes = True


class ActivityLogListResponse(SuccessResponse):
    activities: list[ActivityLogResponse]
    total: int
