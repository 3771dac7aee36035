"""
Lead pipeline endpoints.

Permissions:
- List/Get, statuses, sources, activity trail: 'leads.view'
- Create: 'leads.create'
- Update, stage change, activity append, rescoring: 'leads.update'
- Convert: 'leads.convert', plus 'contacts.create' when a contact is created
- Delete: 'leads.delete'
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.deps import get_current_user, get_request_timeout, requires
from leadcrm.core.permissions import (
    CONTACTS_CREATE, LEADS_CONVERT, LEADS_CREATE, LEADS_DELETE, LEADS_UPDATE, LEADS_VIEW,
    require_permission
)
from leadcrm.db.base import get_db, run_with_timeout
from leadcrm.models.lead import Lead, LeadPriority, LeadTemperature
from leadcrm.models.lead_activity import ActivityOutcome, LeadActivity
from leadcrm.models.user import User
from leadcrm.schemas.common import MessageResponse, Pagination
from leadcrm.schemas.lead import (
    LeadCreate, LeadUpdate, LeadStageChange, LeadConvert,
    LeadResponse, LeadDetailResponse, LeadEnvelope, LeadDetailEnvelope, LeadListResponse,
    LeadActivityCreate, LeadActivityResponse, LeadActivityEnvelope, LeadActivityListResponse,
    StageChangeResponse, LeadConvertResponse, ScoreResponse,
    StageResponse, StageListResponse, LeadSourceResponse, LeadSourceListResponse
)
from leadcrm.api.v1.contacts import contact_to_response
from leadcrm.services import lead_pipeline
from leadcrm.services.pipeline_config import get_pipeline_config

router = APIRouter()


def lead_to_response(lead: Lead) -> LeadResponse:
    """Convert Lead model to response schema."""
    return LeadResponse(
        id=lead.id,
        first_name=lead.first_name,
        last_name=lead.last_name,
        full_name=lead.full_name,
        email=lead.email,
        phone=lead.phone,
        company=lead.company,
        job_title=lead.job_title,
        website=lead.website,
        industry=lead.industry,
        company_size=lead.company_size,
        annual_revenue=lead.annual_revenue,
        budget_range=lead.budget_range,
        decision_maker=bool(lead.decision_maker),
        lead_source_id=lead.lead_source_id,
        status=lead.status,
        temperature=lead.temperature.value if isinstance(lead.temperature, LeadTemperature) else lead.temperature,
        priority=lead.priority.value if isinstance(lead.priority, LeadPriority) else lead.priority,
        score=lead.score,
        assigned_to=lead.assigned_to,
        created_by=lead.created_by,
        notes=lead.notes,
        tags=list(lead.tags or []),
        next_follow_up=lead.next_follow_up,
        last_contacted_at=lead.last_contacted_at,
        converted_at=lead.converted_at,
        conversion_type=lead.conversion_type,
        conversion_value=lead.conversion_value,
        converted_contact_id=lead.converted_contact_id,
        version=lead.version,
        created=lead.created,
        updated=lead.updated,
    )


def activity_to_response(activity: LeadActivity) -> LeadActivityResponse:
    return LeadActivityResponse(
        id=activity.id,
        lead_id=activity.lead_id,
        activity_type=activity.activity_type,
        subject=activity.subject,
        description=activity.description,
        outcome=activity.outcome.value if isinstance(activity.outcome, ActivityOutcome) else activity.outcome,
        duration_minutes=activity.duration_minutes or 0,
        next_action=activity.next_action,
        activity_date=activity.activity_date,
        details=activity.details,
        created_by=activity.created_by,
        created=activity.created,
    )


# ============================================================================
# REFERENCE DATA
# ============================================================================

@router.get("/statuses", response_model=StageListResponse)
async def list_statuses(
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(LEADS_VIEW)),
):
    """Configured pipeline stages in order."""
    config = await get_pipeline_config(db)
    return StageListResponse(
        statuses=[
            StageResponse(
                slug=stage.slug,
                name=stage.name,
                color=stage.color,
                sort_order=stage.sort_order,
                is_terminal=config.is_terminal(stage.slug),
            )
            for stage in config.stages
        ],
        initial_stage=config.initial_stage,
        converted_stage=config.converted_stage,
        lost_stage=config.lost_stage,
    )


@router.get("/sources", response_model=LeadSourceListResponse)
async def list_sources(
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(LEADS_VIEW)),
):
    sources = await lead_pipeline.list_sources(db)
    return LeadSourceListResponse(
        sources=[LeadSourceResponse.model_validate(s) for s in sources]
    )


# ============================================================================
# LEADS
# ============================================================================

@router.get("", response_model=LeadListResponse)
async def list_leads(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    search: Optional[str] = Query(None, description="Search name/email/company"),
    status: Optional[str] = Query(None, description="Filter by stage"),
    source: Optional[str] = Query(None, description="Filter by lead source id"),
    assigned_to: Optional[str] = Query(None, description="Filter by assignee"),
    temperature: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    sort_by: str = Query("created"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(LEADS_VIEW)),
    timeout: float = Depends(get_request_timeout),
):
    """List leads with filters and pagination."""
    lead_filter = lead_pipeline.LeadFilter(
        search=search,
        status=status,
        source=source,
        assigned_to=assigned_to,
        temperature=temperature,
        priority=priority,
    )
    leads, total = await run_with_timeout(
        lead_pipeline.list_leads(
            db, lead_filter, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
        ),
        timeout,
    )
    return LeadListResponse(
        leads=[lead_to_response(lead) for lead in leads],
        pagination=Pagination.build(page, limit, total),
    )


@router.post("", response_model=LeadEnvelope, status_code=status.HTTP_201_CREATED)
async def create_lead(
    lead_data: LeadCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(LEADS_CREATE)),
    timeout: float = Depends(get_request_timeout),
):
    """Create a new lead in the initial stage."""
    lead = await run_with_timeout(
        lead_pipeline.create_lead(db, current_user, lead_data.model_dump()),
        timeout,
    )
    return LeadEnvelope(lead=lead_to_response(lead))


@router.get("/{lead_id}", response_model=LeadDetailEnvelope)
async def get_lead(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(LEADS_VIEW)),
):
    lead = await lead_pipeline.get_lead(db, lead_id)
    detail = LeadDetailResponse(
        **lead_to_response(lead).model_dump(),
        activity_count=await lead_pipeline.activity_count(db, lead.id),
        days_since_last_contact=lead_pipeline.days_since_last_contact(lead),
    )
    return LeadDetailEnvelope(lead=detail)


@router.put("/{lead_id}", response_model=LeadEnvelope)
async def update_lead(
    lead_id: str,
    lead_data: LeadUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(LEADS_UPDATE)),
    timeout: float = Depends(get_request_timeout),
):
    lead = await run_with_timeout(
        lead_pipeline.update_lead(
            db, current_user, lead_id, lead_data.model_dump(exclude_unset=True)
        ),
        timeout,
    )
    return LeadEnvelope(lead=lead_to_response(lead))


@router.delete("/{lead_id}", response_model=MessageResponse)
async def delete_lead(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(LEADS_DELETE)),
    timeout: float = Depends(get_request_timeout),
):
    await run_with_timeout(lead_pipeline.delete_lead(db, current_user, lead_id), timeout)
    return MessageResponse(message="Lead deleted successfully")


# ============================================================================
# PIPELINE OPERATIONS
# ============================================================================

@router.post("/{lead_id}/stage", response_model=StageChangeResponse)
async def change_stage(
    lead_id: str,
    stage_data: LeadStageChange,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(LEADS_UPDATE)),
    timeout: float = Depends(get_request_timeout),
):
    """Move a lead to another stage."""
    result = await run_with_timeout(
        lead_pipeline.transition_stage(
            db, current_user, lead_id, stage_data.status, notes=stage_data.notes
        ),
        timeout,
    )
    return StageChangeResponse(
        lead=lead_to_response(result.lead),
        from_stage=result.transition.from_stage,
        to_stage=result.transition.to_stage,
        skipped=result.transition.is_skip,
        activity=activity_to_response(result.activity),
    )


@router.post("/{lead_id}/convert", response_model=LeadConvertResponse)
async def convert_lead(
    lead_id: str,
    convert_data: LeadConvert,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(LEADS_CONVERT)),
    timeout: float = Depends(get_request_timeout),
):
    """Convert a lead, optionally creating a contact from it."""
    if convert_data.create_contact:
        await require_permission(db, current_user, CONTACTS_CREATE)
    lead, contact = await run_with_timeout(
        lead_pipeline.convert_lead(
            db,
            current_user,
            lead_id,
            conversion_type=convert_data.conversion_type,
            conversion_value=convert_data.conversion_value,
            notes=convert_data.notes,
            create_contact=convert_data.create_contact,
        ),
        timeout,
    )
    return LeadConvertResponse(
        lead=lead_to_response(lead),
        contact=contact_to_response(contact) if contact else None,
    )


@router.post("/{lead_id}/score", response_model=ScoreResponse)
async def rescore_lead(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(LEADS_UPDATE)),
    timeout: float = Depends(get_request_timeout),
):
    """Recompute the score from the activity trail."""
    lead = await run_with_timeout(lead_pipeline.score_lead(db, current_user, lead_id), timeout)
    return ScoreResponse(lead_id=lead.id, score=lead.score)


# ============================================================================
# ACTIVITY TRAIL
# ============================================================================

@router.get("/{lead_id}/activities", response_model=LeadActivityListResponse)
async def list_lead_activities(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(LEADS_VIEW)),
):
    await lead_pipeline.get_lead(db, lead_id)
    activities = await lead_pipeline.list_activities(db, lead_id)
    return LeadActivityListResponse(
        activities=[activity_to_response(a) for a in activities]
    )


@router.post(
    "/{lead_id}/activities",
    response_model=LeadActivityEnvelope,
    status_code=status.HTTP_201_CREATED
)
async def add_lead_activity(
    lead_id: str,
    activity_data: LeadActivityCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(LEADS_UPDATE)),
    timeout: float = Depends(get_request_timeout),
):
    """Log an interaction. Accepted on converted and lost leads too."""
    activity = await run_with_timeout(
        lead_pipeline.append_activity(db, current_user, lead_id, activity_data.model_dump()),
        timeout,
    )
    lead = await lead_pipeline.get_lead(db, lead_id)
    return LeadActivityEnvelope(activity=activity_to_response(activity), score=lead.score)
