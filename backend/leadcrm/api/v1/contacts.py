"""
Contact endpoints.

Permissions:
- List/Get: 'contacts.view'
- Create: 'contacts.create'
- Update: 'contacts.update'
- Delete: 'contacts.delete' (soft delete)
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.config import settings
from leadcrm.core.deps import get_current_user, get_request_timeout, requires
from leadcrm.core.permissions import (
    CONTACTS_CREATE, CONTACTS_DELETE, CONTACTS_UPDATE, CONTACTS_VIEW
)
from leadcrm.db.base import get_db, run_with_timeout
from leadcrm.models.contact import Contact
from leadcrm.models.user import User
from leadcrm.schemas.common import MessageResponse, Pagination
from leadcrm.schemas.contact import (
    ContactCreate, ContactUpdate, ContactResponse, ContactEnvelope, ContactListResponse
)
from leadcrm.services import contacts as contact_service

router = APIRouter()


def contact_to_response(contact: Contact) -> ContactResponse:
    return ContactResponse.model_validate(contact)


@router.get("", response_model=ContactListResponse)
async def list_contacts(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    search: Optional[str] = Query(None, description="Search name/email/company"),
    owner_id: Optional[str] = Query(None),
    company: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(CONTACTS_VIEW)),
    timeout: float = Depends(get_request_timeout),
):
    contacts, total = await run_with_timeout(
        contact_service.list_contacts(
            db, page=page, limit=limit, search=search, owner_id=owner_id, company=company
        ),
        timeout,
    )
    return ContactListResponse(
        contacts=[contact_to_response(c) for c in contacts],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{contact_id}", response_model=ContactEnvelope)
async def get_contact(
    contact_id: str,
    db: AsyncSession = Depends(get_db),
    _: frozenset = Depends(requires(CONTACTS_VIEW)),
):
    contact = await contact_service.get_contact(db, contact_id)
    return ContactEnvelope(contact=contact_to_response(contact))


@router.post("", response_model=ContactEnvelope, status_code=status.HTTP_201_CREATED)
async def create_contact(
    contact_data: ContactCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(CONTACTS_CREATE)),
    timeout: float = Depends(get_request_timeout),
):
    contact = await run_with_timeout(
        contact_service.create_contact(db, current_user, contact_data.model_dump()),
        timeout,
    )
    return ContactEnvelope(contact=contact_to_response(contact))


@router.put("/{contact_id}", response_model=ContactEnvelope)
async def update_contact(
    contact_id: str,
    contact_data: ContactUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(CONTACTS_UPDATE)),
    timeout: float = Depends(get_request_timeout),
):
    contact = await run_with_timeout(
        contact_service.update_contact(
            db, current_user, contact_id, contact_data.model_dump(exclude_unset=True)
        ),
        timeout,
    )
    return ContactEnvelope(contact=contact_to_response(contact))


@router.delete("/{contact_id}", response_model=MessageResponse)
async def delete_contact(
    contact_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    _: frozenset = Depends(requires(CONTACTS_DELETE)),
    timeout: float = Depends(get_request_timeout),
):
    await run_with_timeout(contact_service.delete_contact(db, current_user, contact_id), timeout)
    return MessageResponse(message="Contact deleted successfully")
