"""
Activity log endpoints (read-only).

Permissions:
- List: 'activities.view'
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.deps import get_request_timeout, requires
from leadcrm.core.permissions import ACTIVITIES_VIEW
from leadcrm.db.base import get_db, run_with_timeout
from leadcrm.schemas.activity import ActivityLogResponse, ActivityLogListResponse
from leadcrm.services import activity_log

router = APIRouter()


@router.get("", response_model=ActivityLogListResponse)
async def list_activities(
    user_id: Optional[str] = Query(None, description="Filter by actor"),
    type: Optional[str] = Query(None, description="Filter by event type"),
    subject_type: Optional[str] = Query(None),
    subject_id: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(ACTIVITIES_VIEW)),
    timeout: float = Depends(get_request_timeout),
):
    """Query the audit trail, most recent first by default."""
    activity_filter = activity_log.ActivityFilter(
        user_id=user_id,
        type=type,
        subject_type=subject_type,
        subject_id=subject_id,
        since=since,
        until=until,
    )
    entries, total = await run_with_timeout(
        activity_log.query(db, activity_filter, limit=limit, offset=offset, order=order),
        timeout,
    )
    return ActivityLogListResponse(
        activities=[ActivityLogResponse.model_validate(e) for e in entries],
        total=total,
    )
