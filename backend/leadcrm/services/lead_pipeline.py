"""
Lead pipeline engine.

Owns lead records, stage transitions, scoring and the lead activity trail.

Every mutation loads the lead with ``SELECT ... FOR UPDATE`` and relies on the
``version`` column for optimistic concurrency, so two requests racing on the
same lead cannot both apply. A stage change, its ``stage_changed`` activity
and the recomputed score go out in one flush: either all of them are stored
or none.

Permission checks happen in the HTTP layer before any of these functions run.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leadcrm.core.errors import ConflictError, MissingFieldError, NotFoundError, ValidationError
from leadcrm.models.base import utcnow, as_utc
from leadcrm.models.contact import Contact
from leadcrm.models.lead import Lead, LeadPriority, LeadSource, LeadTemperature
from leadcrm.models.lead_activity import (
    ActivityOutcome, LeadActivity, CONVERTED, STAGE_CHANGED, SYSTEM_ACTIVITY_TYPES
)
from leadcrm.models.user import User, UserStatus
from leadcrm.services import activity_log, contacts
from leadcrm.services.pipeline_config import PipelineConfig, get_pipeline_config
from leadcrm.services.scoring import ScoredActivity, compute_score
from leadcrm.services.stage_machine import Transition, TransitionKind, check_transition

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("first_name", "last_name", "email")

UPDATABLE_FIELDS = (
    "first_name", "last_name", "email", "phone", "company", "job_title", "website",
    "industry", "company_size", "annual_revenue", "budget_range", "decision_maker",
    "lead_source_id", "temperature", "priority", "assigned_to", "notes", "tags",
    "next_follow_up",
)

SORTABLE_FIELDS = {
    "created": Lead.created,
    "updated": Lead.updated,
    "score": Lead.score,
    "last_name": Lead.last_name,
    "company": Lead.company,
}


@dataclass
class LeadFilter:
    search: Optional[str] = None
    status: Optional[str] = None
    source: Optional[str] = None
    assigned_to: Optional[str] = None
    temperature: Optional[str] = None
    priority: Optional[str] = None


@dataclass
class StageChangeResult:
    lead: Lead
    transition: Transition
    activity: LeadActivity


# ============================================================================
# LOADING
# ============================================================================

async def get_lead(db: AsyncSession, lead_id: str, for_update: bool = False) -> Lead:
    query = select(Lead).where(Lead.id == lead_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    lead = result.scalar_one_or_none()
    if lead is None:
        raise NotFoundError("Lead not found")
    return lead


async def list_leads(
    db: AsyncSession,
    lead_filter: LeadFilter,
    *,
    page: int,
    limit: int,
    sort_by: str = "created",
    sort_order: str = "desc",
) -> tuple[Sequence[Lead], int]:
    query = select(Lead)

    if lead_filter.search:
        pattern = f"%{lead_filter.search}%"
        query = query.where(
            or_(
                Lead.first_name.ilike(pattern),
                Lead.last_name.ilike(pattern),
                Lead.email.ilike(pattern),
                Lead.company.ilike(pattern),
            )
        )
    if lead_filter.status:
        query = query.where(Lead.status == lead_filter.status)
    if lead_filter.source:
        query = query.where(Lead.lead_source_id == lead_filter.source)
    if lead_filter.assigned_to:
        query = query.where(Lead.assigned_to == lead_filter.assigned_to)
    if lead_filter.temperature:
        query = query.where(Lead.temperature == _parse_enum(LeadTemperature, lead_filter.temperature, "temperature"))
    if lead_filter.priority:
        query = query.where(Lead.priority == _parse_enum(LeadPriority, lead_filter.priority, "priority"))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0

    column = SORTABLE_FIELDS.get(sort_by)
    if column is None:
        raise ValidationError(f"Cannot sort by: {sort_by}")
    ordering = column.asc() if sort_order == "asc" else column.desc()
    query = query.order_by(ordering, Lead.id.asc())

    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return result.scalars().all(), total


async def list_activities(db: AsyncSession, lead_id: str) -> Sequence[LeadActivity]:
    """Activity trail, most recent first."""
    result = await db.execute(
        select(LeadActivity)
        .where(LeadActivity.lead_id == lead_id)
        .order_by(LeadActivity.activity_date.desc(), LeadActivity.created.desc())
    )
    return result.scalars().all()


async def activity_count(db: AsyncSession, lead_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(LeadActivity).where(LeadActivity.lead_id == lead_id)
    )
    return result.scalar() or 0


def days_since_last_contact(lead: Lead, now: Optional[datetime] = None) -> Optional[int]:
    last = as_utc(lead.last_contacted_at)
    if last is None:
        return None
    now = now or utcnow()
    return max(0, (now - last).days)


async def list_sources(db: AsyncSession) -> Sequence[LeadSource]:
    result = await db.execute(
        select(LeadSource).where(LeadSource.is_active.is_(True)).order_by(LeadSource.name.asc())
    )
    return result.scalars().all()


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def _parse_enum(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {field}: {value}. Valid values: {valid}")


def _parse_decimal(value, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field}: {value}")


def _clean_required(data: dict[str, Any], fields: Sequence[str]) -> None:
    for field in fields:
        value = data.get(field)
        if isinstance(value, str):
            value = value.strip()
            data[field] = value
        if not value:
            raise MissingFieldError(field)


def _clean_tags(tags) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = [t for t in tags.split(",")]
    return [str(t).strip() for t in tags if str(t).strip()]


async def _check_source(db: AsyncSession, source_id: Optional[str]) -> None:
    if source_id is None:
        return
    result = await db.execute(select(LeadSource.id).where(LeadSource.id == source_id))
    if result.scalar_one_or_none() is None:
        raise ValidationError(f"Unknown lead source: {source_id}")


async def _check_assignee(db: AsyncSession, user_id: Optional[str]) -> None:
    if user_id is None:
        return
    result = await db.execute(
        select(User.id).where(User.id == user_id, User.status == UserStatus.ACTIVE)
    )
    if result.scalar_one_or_none() is None:
        raise ValidationError(f"Cannot assign lead to unknown or inactive user: {user_id}")


async def _flush_lead(db: AsyncSession, lead: Lead) -> None:
    # A failed flush expires the instance, so read the id first.
    lead_id = lead.id
    try:
        await db.flush()
    except StaleDataError:
        logger.info("Concurrent modification detected on lead %s", lead_id)
        raise ConflictError("Lead was modified by another request, reload and retry")


# ============================================================================
# SCORING
# ============================================================================

async def recompute_score(db: AsyncSession, lead: Lead, config: PipelineConfig) -> int:
    """Derive the score from the stored trail and assign it to the lead."""
    await _flush_lead(db, lead)
    result = await db.execute(
        select(
            LeadActivity.id,
            LeadActivity.activity_type,
            LeadActivity.outcome,
            LeadActivity.activity_date,
        ).where(LeadActivity.lead_id == lead.id)
    )
    trail = [
        ScoredActivity(
            id=row.id,
            activity_type=row.activity_type,
            outcome=row.outcome.value if isinstance(row.outcome, ActivityOutcome) else row.outcome,
            activity_date=row.activity_date,
        )
        for row in result.all()
    ]
    score = compute_score(trail, config)
    if lead.score != score:
        lead.score = score
    return score


async def score_lead(db: AsyncSession, actor: User, lead_id: str) -> Lead:
    """Recompute and store the score. Running it twice yields the same number."""
    config = await get_pipeline_config(db)
    lead = await get_lead(db, lead_id, for_update=True)
    await recompute_score(db, lead, config)
    await _flush_lead(db, lead)
    return lead


# ============================================================================
# CREATE / UPDATE / DELETE
# ============================================================================

async def create_lead(db: AsyncSession, actor: User, data: dict[str, Any]) -> Lead:
    """
    Intake a new lead in the initial stage with score 0.

    Duplicate emails are accepted: each inbound lead is tracked on its own.
    """
    data = dict(data)
    _clean_required(data, REQUIRED_FIELDS)
    config = await get_pipeline_config(db)

    await _check_source(db, data.get("lead_source_id"))
    await _check_assignee(db, data.get("assigned_to"))

    lead = Lead(
        first_name=data["first_name"],
        last_name=data["last_name"],
        email=data["email"].lower(),
        phone=data.get("phone"),
        company=data.get("company"),
        job_title=data.get("job_title"),
        website=data.get("website"),
        industry=data.get("industry"),
        company_size=data.get("company_size"),
        annual_revenue=_parse_decimal(data.get("annual_revenue"), "annual_revenue"),
        budget_range=data.get("budget_range"),
        decision_maker=bool(data.get("decision_maker") or False),
        lead_source_id=data.get("lead_source_id"),
        status=config.initial_stage,
        temperature=_parse_enum(LeadTemperature, data.get("temperature") or LeadTemperature.COLD, "temperature"),
        priority=_parse_enum(LeadPriority, data.get("priority") or LeadPriority.MEDIUM, "priority"),
        score=0,
        assigned_to=data.get("assigned_to"),
        created_by=actor.id,
        notes=data.get("notes"),
        tags=_clean_tags(data.get("tags")),
        next_follow_up=data.get("next_follow_up"),
    )
    db.add(lead)
    await db.flush()

    await activity_log.append(
        db, "lead_created", f"Lead {lead.full_name} created",
        user_id=actor.id, subject_type="lead", subject_id=lead.id,
        details={"email": lead.email, "company": lead.company}, category="leads",
    )
    return lead


async def update_lead(db: AsyncSession, actor: User, lead_id: str, changes: dict[str, Any]) -> Lead:
    """
    Allow-listed field update. Stage and score are not editable here.
    """
    applicable = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    if not applicable:
        raise ValidationError("No valid fields provided for update")
    for field in REQUIRED_FIELDS:
        if field in applicable:
            _clean_required(applicable, (field,))

    if "lead_source_id" in applicable:
        await _check_source(db, applicable["lead_source_id"])
    if "assigned_to" in applicable:
        await _check_assignee(db, applicable["assigned_to"])
    if "temperature" in applicable:
        applicable["temperature"] = _parse_enum(LeadTemperature, applicable["temperature"], "temperature")
    if "priority" in applicable:
        applicable["priority"] = _parse_enum(LeadPriority, applicable["priority"], "priority")
    if "annual_revenue" in applicable:
        applicable["annual_revenue"] = _parse_decimal(applicable["annual_revenue"], "annual_revenue")
    if "tags" in applicable:
        applicable["tags"] = _clean_tags(applicable["tags"])
    if "email" in applicable:
        applicable["email"] = applicable["email"].lower()

    lead = await get_lead(db, lead_id, for_update=True)
    for field, value in applicable.items():
        setattr(lead, field, value)
    await _flush_lead(db, lead)

    await activity_log.append(
        db, "lead_updated", f"Lead {lead.full_name} updated",
        user_id=actor.id, subject_type="lead", subject_id=lead.id,
        details={"fields": sorted(applicable.keys())}, category="leads",
    )
    return lead


async def delete_lead(db: AsyncSession, actor: User, lead_id: str) -> None:
    lead = await get_lead(db, lead_id, for_update=True)
    name = lead.full_name
    await db.execute(delete(LeadActivity).where(LeadActivity.lead_id == lead.id))
    await db.delete(lead)
    await _flush_lead(db, lead)

    await activity_log.append(
        db, "lead_deleted", f"Lead {name} deleted",
        user_id=actor.id, subject_type="lead", subject_id=lead_id, category="leads",
    )


# ============================================================================
# STAGE TRANSITIONS
# ============================================================================

def _stage_name(config: PipelineConfig, slug: str) -> str:
    for stage in config.stages:
        if stage.slug == slug:
            return stage.name
    return slug


async def _apply_transition(
    db: AsyncSession,
    actor: User,
    lead: Lead,
    config: PipelineConfig,
    transition: Transition,
    notes: Optional[str] = None,
) -> LeadActivity:
    """Move the lead and append the matching stage_changed activity."""
    now = utcnow()
    lead.status = transition.to_stage
    if transition.kind == TransitionKind.CONVERT:
        lead.converted_at = now

    outcome = ActivityOutcome.NEGATIVE if transition.kind == TransitionKind.LOST else ActivityOutcome.POSITIVE
    subject = (
        f"Stage changed from {_stage_name(config, transition.from_stage)} "
        f"to {_stage_name(config, transition.to_stage)}"
    )
    if transition.is_skip:
        subject += " (skipped ahead)"

    activity = LeadActivity(
        lead_id=lead.id,
        activity_type=STAGE_CHANGED,
        subject=subject,
        description=notes,
        outcome=outcome,
        activity_date=now,
        details={
            "from_stage": transition.from_stage,
            "to_stage": transition.to_stage,
            "transition": transition.kind.value,
            "skipped": transition.is_skip,
            "skipped_stages": list(transition.skipped_stages),
        },
        created_by=actor.id,
    )
    db.add(activity)
    return activity


async def _log_transition(db: AsyncSession, actor: User, lead: Lead, transition: Transition) -> None:
    logger.info(
        "Lead %s moved %s -> %s (%s)",
        lead.id, transition.from_stage, transition.to_stage, transition.kind.value
    )
    await activity_log.append(
        db,
        "lead_stage_skipped" if transition.is_skip else "lead_stage_changed",
        f"Lead {lead.full_name} moved to {transition.to_stage}",
        user_id=actor.id, subject_type="lead", subject_id=lead.id,
        details={
            "from_stage": transition.from_stage,
            "to_stage": transition.to_stage,
            "transition": transition.kind.value,
            "skipped": transition.is_skip,
            "skipped_stages": list(transition.skipped_stages),
        },
        category="leads",
    )


async def transition_stage(
    db: AsyncSession,
    actor: User,
    lead_id: str,
    target: Optional[str],
    notes: Optional[str] = None,
) -> StageChangeResult:
    """
    Move a lead to ``target``.

    Raises InvalidTransitionError (no mutation) for moves the stage machine
    rejects and ConflictError when another request changed the lead first.
    """
    if not target:
        raise MissingFieldError("status")

    config = await get_pipeline_config(db)
    lead = await get_lead(db, lead_id, for_update=True)
    transition = check_transition(config, lead.status, target)

    activity = await _apply_transition(db, actor, lead, config, transition, notes)
    await recompute_score(db, lead, config)
    await _flush_lead(db, lead)

    await _log_transition(db, actor, lead, transition)
    return StageChangeResult(lead=lead, transition=transition, activity=activity)


async def convert_lead(
    db: AsyncSession,
    actor: User,
    lead_id: str,
    conversion_type: Optional[str] = None,
    conversion_value=None,
    notes: Optional[str] = None,
    create_contact: bool = False,
) -> tuple[Lead, Optional[Contact]]:
    """
    Convert a lead.

    Valid only where the stage machine allows a move to the converted stage.
    Appends the stage_changed activity and a ``converted`` activity carrying
    the value; optionally creates a contact from the lead.
    """
    value = _parse_decimal(conversion_value, "conversion_value") or Decimal("0")
    if value < 0:
        raise ValidationError("conversion_value cannot be negative")
    conversion_type = conversion_type or "qualified"

    config = await get_pipeline_config(db)
    lead = await get_lead(db, lead_id, for_update=True)
    transition = check_transition(config, lead.status, config.converted_stage)

    await _apply_transition(db, actor, lead, config, transition, notes)
    lead.conversion_type = conversion_type
    lead.conversion_value = value

    contact = None
    if create_contact:
        contact = await contacts.create_contact_from_lead(db, actor, lead)
        lead.converted_contact_id = contact.id

    db.add(LeadActivity(
        lead_id=lead.id,
        activity_type=CONVERTED,
        subject=f"Lead converted ({conversion_type})",
        description=notes,
        outcome=ActivityOutcome.POSITIVE,
        activity_date=utcnow(),
        details={
            "conversion_type": conversion_type,
            "conversion_value": str(value),
            "contact_id": contact.id if contact else None,
        },
        created_by=actor.id,
    ))
    await recompute_score(db, lead, config)
    await _flush_lead(db, lead)

    await _log_transition(db, actor, lead, transition)
    await activity_log.append(
        db, "lead_converted", f"Lead {lead.full_name} converted",
        user_id=actor.id, subject_type="lead", subject_id=lead.id,
        details={
            "conversion_type": conversion_type,
            "conversion_value": str(value),
            "contact_id": contact.id if contact else None,
        },
        category="leads",
    )
    return lead, contact


# ============================================================================
# ACTIVITIES
# ============================================================================

async def append_activity(db: AsyncSession, actor: User, lead_id: str, data: dict[str, Any]) -> LeadActivity:
    """
    Record an interaction and rescore the lead.

    Accepted on terminal leads too, for record-keeping.
    """
    activity_type = (data.get("activity_type") or "").strip()
    if not activity_type:
        raise MissingFieldError("activity_type")
    subject = (data.get("subject") or "").strip()
    if not subject:
        raise MissingFieldError("subject")

    config = await get_pipeline_config(db)
    if activity_type in SYSTEM_ACTIVITY_TYPES or activity_type not in config.activity_types:
        valid = ", ".join(config.activity_types)
        raise ValidationError(f"Invalid activity type: {activity_type}. Valid types: {valid}")

    outcome = _parse_enum(ActivityOutcome, data.get("outcome") or ActivityOutcome.NEUTRAL, "outcome")
    duration = data.get("duration_minutes") or 0
    if duration < 0:
        raise ValidationError("duration_minutes cannot be negative")
    activity_date = as_utc(data.get("activity_date")) or utcnow()

    lead = await get_lead(db, lead_id, for_update=True)

    activity = LeadActivity(
        lead_id=lead.id,
        activity_type=activity_type,
        subject=subject,
        description=data.get("description"),
        outcome=outcome,
        duration_minutes=duration,
        next_action=data.get("next_action"),
        activity_date=activity_date,
        details={},
        created_by=actor.id,
    )
    db.add(activity)

    if activity_type not in config.non_contact_activity_types:
        last = as_utc(lead.last_contacted_at)
        if last is None or activity_date > last:
            lead.last_contacted_at = activity_date

    await recompute_score(db, lead, config)
    await _flush_lead(db, lead)

    await activity_log.append(
        db, "lead_activity_added", f"{activity_type.capitalize()} logged for {lead.full_name}",
        user_id=actor.id, subject_type="lead", subject_id=lead.id,
        details={"activity_id": activity.id, "activity_type": activity_type, "outcome": outcome.value},
        category="leads",
    )
    return activity
