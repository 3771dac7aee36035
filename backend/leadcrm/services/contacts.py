"""
Contact records, created directly or from a converted lead.
"""
from typing import Any, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.errors import MissingFieldError, NotFoundError, ValidationError
from leadcrm.models.contact import Contact
from leadcrm.models.lead import Lead
from leadcrm.models.user import User
from leadcrm.services import activity_log

UPDATABLE_FIELDS = ("first_name", "last_name", "email", "phone", "company", "job_title", "notes", "owner_id")
REQUIRED_FIELDS = ("first_name", "last_name")


async def get_contact(db: AsyncSession, contact_id: str) -> Contact:
    result = await db.execute(
        select(Contact).where(Contact.id == contact_id, Contact.is_active.is_(True))
    )
    contact = result.scalar_one_or_none()
    if contact is None:
        raise NotFoundError("Contact not found")
    return contact


async def list_contacts(
    db: AsyncSession,
    *,
    page: int,
    limit: int,
    search: Optional[str] = None,
    owner_id: Optional[str] = None,
    company: Optional[str] = None,
) -> tuple[list[Contact], int]:
    query = select(Contact).where(Contact.is_active.is_(True))

    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                Contact.first_name.ilike(pattern),
                Contact.last_name.ilike(pattern),
                Contact.email.ilike(pattern),
                Contact.company.ilike(pattern),
            )
        )
    if owner_id:
        query = query.where(Contact.owner_id == owner_id)
    if company:
        query = query.where(Contact.company == company)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    query = query.order_by(Contact.created.desc(), Contact.id.desc())
    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


async def create_contact(db: AsyncSession, actor: User, data: dict[str, Any]) -> Contact:
    for field in REQUIRED_FIELDS:
        if not data.get(field):
            raise MissingFieldError(field)

    contact = Contact(
        **{k: data.get(k) for k in UPDATABLE_FIELDS},
        is_active=True,
    )
    if contact.owner_id is None:
        contact.owner_id = actor.id
    db.add(contact)
    await db.flush()

    await activity_log.append(
        db, "contact_created", f"Contact {contact.first_name} {contact.last_name} created",
        user_id=actor.id, subject_type="contact", subject_id=contact.id, category="contacts",
    )
    return contact


async def create_contact_from_lead(db: AsyncSession, actor: User, lead: Lead) -> Contact:
    """Copy a lead's person fields into a new contact linked back to the lead."""
    contact = Contact(
        first_name=lead.first_name,
        last_name=lead.last_name,
        email=lead.email,
        phone=lead.phone,
        company=lead.company,
        job_title=lead.job_title,
        notes=lead.notes,
        source_lead_id=lead.id,
        owner_id=lead.assigned_to or actor.id,
        is_active=True,
    )
    db.add(contact)
    await db.flush()
    return contact


async def update_contact(db: AsyncSession, actor: User, contact_id: str, changes: dict[str, Any]) -> Contact:
    applicable = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    if not applicable:
        raise ValidationError("No valid fields provided for update")
    for field in REQUIRED_FIELDS:
        if field in applicable and not applicable[field]:
            raise MissingFieldError(field)

    contact = await get_contact(db, contact_id)
    for field, value in applicable.items():
        setattr(contact, field, value)
    await db.flush()

    await activity_log.append(
        db, "contact_updated", "Contact updated",
        user_id=actor.id, subject_type="contact", subject_id=contact.id,
        details={"fields": sorted(applicable.keys())}, category="contacts",
    )
    return contact


async def delete_contact(db: AsyncSession, actor: User, contact_id: str) -> None:
    """Soft delete."""
    contact = await get_contact(db, contact_id)
    contact.is_active = False
    await db.flush()

    await activity_log.append(
        db, "contact_deleted", f"Contact {contact.first_name} {contact.last_name} deleted",
        user_id=actor.id, subject_type="contact", subject_id=contact.id, category="contacts",
    )
