"""
Contact schemas.
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from leadcrm.schemas.common import Pagination, SuccessResponse


class ContactCreate(BaseModel):
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=200)
    job_title: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None
    owner_id: Optional[str] = None


class ContactUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=200)
    job_title: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None
    owner_id: Optional[str] = None


class ContactResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    notes: Optional[str] = None
    source_lead_id: Optional[str] = None
    owner_id: Optional[str] = None
    created: datetime
    updated: datetime

    class Config:
        from_attributes = True


class ContactEnvelope(SuccessResponse):
    contact: ContactResponse


class ContactListResponse(SuccessResponse):
    contacts: list[ContactResponse]
    pagination: Pagination
