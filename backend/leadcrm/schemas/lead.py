"""
Pydantic schemas for the lead pipeline.

Includes schemas for Leads, stage transitions, conversions and the lead
activity trail.
"""
from typing import Any, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, EmailStr, Field

from leadcrm.schemas.common import Pagination, SuccessResponse
from leadcrm.schemas.contact import ContactResponse


# ============================================================================
# LEAD SCHEMAS
# ============================================================================

class LeadCreate(BaseModel):
    """Create a new lead. It always starts in the initial stage."""
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=200)
    job_title: Optional[str] = Field(None, max_length=200)
    website: Optional[str] = Field(None, max_length=500)
    industry: Optional[str] = Field(None, max_length=100)
    company_size: Optional[str] = Field(None, max_length=50)
    annual_revenue: Optional[Decimal] = Field(None, ge=0)
    budget_range: Optional[str] = Field(None, max_length=100)
    decision_maker: bool = False
    lead_source_id: Optional[str] = None
    temperature: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    next_follow_up: Optional[datetime] = None


class LeadUpdate(BaseModel):
    """Update a lead. Stage and score are not editable here."""
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=200)
    job_title: Optional[str] = Field(None, max_length=200)
    website: Optional[str] = Field(None, max_length=500)
    industry: Optional[str] = Field(None, max_length=100)
    company_size: Optional[str] = Field(None, max_length=50)
    annual_revenue: Optional[Decimal] = Field(None, ge=0)
    budget_range: Optional[str] = Field(None, max_length=100)
    decision_maker: Optional[bool] = None
    lead_source_id: Optional[str] = None
    temperature: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    next_follow_up: Optional[datetime] = None


class LeadStageChange(BaseModel):
    """Move a lead to another stage."""
    status: str
    notes: Optional[str] = None


class LeadConvert(BaseModel):
    """Convert a lead, optionally creating a contact from it."""
    conversion_type: Optional[str] = Field(None, max_length=50)
    conversion_value: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    create_contact: bool = False


class LeadResponse(BaseModel):
    """Lead response."""
    id: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    annual_revenue: Optional[Decimal] = None
    budget_range: Optional[str] = None
    decision_maker: bool = False
    lead_source_id: Optional[str] = None
    status: str
    temperature: str
    priority: str
    score: int
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = []
    next_follow_up: Optional[datetime] = None
    last_contacted_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    conversion_type: Optional[str] = None
    conversion_value: Optional[Decimal] = None
    converted_contact_id: Optional[str] = None
    version: int
    created: datetime
    updated: datetime


class LeadDetailResponse(LeadResponse):
    activity_count: int = 0
    days_since_last_contact: Optional[int] = None


class LeadEnvelope(SuccessResponse):
    lead: LeadResponse


class LeadDetailEnvelope(SuccessResponse):
    lead: LeadDetailResponse


class LeadListResponse(SuccessResponse):
    """Paginated list of leads."""
    leads: list[LeadResponse]
    pagination: Pagination


# ============================================================================
# LEAD ACTIVITY SCHEMAS
# ============================================================================

class LeadActivityCreate(BaseModel):
    """Log an interaction with a lead."""
    activity_type: str = Field(..., max_length=50)
    subject: str = Field(..., max_length=200)
    description: Optional[str] = None
    outcome: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, ge=0)
    next_action: Optional[str] = Field(None, max_length=500)
    activity_date: Optional[datetime] = None


class LeadActivityResponse(BaseModel):
    id: str
    lead_id: str
    activity_type: str
    subject: str
    description: Optional[str] = None
    outcome: str
    duration_minutes: int = 0
    next_action: Optional[str] = None
    activity_date: datetime
    details: Optional[dict[str, Any]] = None
    created_by: Optional[str] = None
    created: datetime


class LeadActivityEnvelope(SuccessResponse):
    activity: LeadActivityResponse
    score: int


class LeadActivityListResponse(SuccessResponse):
    activities: list[LeadActivityResponse]


class StageChangeResponse(SuccessResponse):
    lead: LeadResponse
    from_stage: str
    to_stage: str
    skipped: bool
    activity: LeadActivityResponse


class LeadConvertResponse(SuccessResponse):
    lead: LeadResponse
    contact: Optional[ContactResponse] = None


class ScoreResponse(SuccessResponse):
    lead_id: str
    score: int


# ============================================================================
# REFERENCE DATA
# ============================================================================

class StageResponse(BaseModel):
    slug: str
    name: str
    color: Optional[str] = None
    sort_order: int
    is_terminal: bool = False


class StageListResponse(SuccessResponse):
    statuses: list[StageResponse]
    initial_stage: str
    converted_stage: str
    lost_stage: str


class LeadSourceResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class LeadSourceListResponse(SuccessResponse):
    sources: list[LeadSourceResponse]
