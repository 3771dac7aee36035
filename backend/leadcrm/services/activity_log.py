"""
Activity log service.

The audit trail is best-effort: ``append`` writes inside a SAVEPOINT so a
failed insert rolls back only the log row, and the failure is reported to
this module's logger instead of the caller. The triggering operation's
primary write is unaffected.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.models.activity import ActivityLogEntry

logger = logging.getLogger(__name__)


@dataclass
class ActivityFilter:
    """Filters accepted by ``query``; unset fields are ignored."""
    user_id: Optional[str] = None
    type: Optional[str] = None
    subject_type: Optional[str] = None
    subject_id: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None


async def append(
    db: AsyncSession,
    type: str,
    title: str,
    *,
    user_id: Optional[str] = None,
    description: Optional[str] = None,
    subject_type: Optional[str] = None,
    subject_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    category: str = "system",
) -> Optional[ActivityLogEntry]:
    """
    Record a domain event.

    Returns the stored entry, or None when the write failed. Never raises for
    storage errors.
    """
    entry = ActivityLogEntry(
        user_id=user_id,
        type=type,
        title=title,
        description=description if description is not None else title,
        subject_type=subject_type,
        subject_id=subject_id,
        details=details or {},
        ip_address=ip_address,
        category=category,
    )
    try:
        async with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError:
        logger.exception(
            "Failed to log activity type=%s subject=%s:%s",
            type, subject_type, subject_id
        )
        return None
    return entry


def _apply_filter(query, activity_filter: ActivityFilter):
    if activity_filter.user_id:
        query = query.where(ActivityLogEntry.user_id == activity_filter.user_id)
    if activity_filter.type:
        query = query.where(ActivityLogEntry.type == activity_filter.type)
    if activity_filter.subject_type:
        query = query.where(ActivityLogEntry.subject_type == activity_filter.subject_type)
    if activity_filter.subject_id:
        query = query.where(ActivityLogEntry.subject_id == activity_filter.subject_id)
    if activity_filter.since:
        query = query.where(ActivityLogEntry.created >= activity_filter.since)
    if activity_filter.until:
        query = query.where(ActivityLogEntry.created <= activity_filter.until)
    return query


async def query(
    db: AsyncSession,
    activity_filter: Optional[ActivityFilter] = None,
    limit: int = 50,
    offset: int = 0,
    order: str = "desc",
) -> tuple[Sequence[ActivityLogEntry], int]:
    """Read entries matching the filter. Most recent first unless ``order='asc'``."""
    activity_filter = activity_filter or ActivityFilter()

    base = _apply_filter(select(ActivityLogEntry), activity_filter)
    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar() or 0

    if order == "asc":
        ordering = (ActivityLogEntry.created.asc(), ActivityLogEntry.id.asc())
    else:
        ordering = (ActivityLogEntry.created.desc(), ActivityLogEntry.id.desc())

    result = await db.execute(base.order_by(*ordering).offset(offset).limit(limit))
    return result.scalars().all(), total
