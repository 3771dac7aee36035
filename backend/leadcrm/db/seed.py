"""
Reference data: roles, pipeline stages and lead sources.

``seed_reference_data`` is idempotent; rows that already exist (matched by
name or slug) are left untouched so out-of-band edits survive restarts.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.core.permissions import (
    WILDCARD, ALL_PERMISSIONS,
    LEADS_VIEW, LEADS_CREATE, LEADS_UPDATE, LEADS_CONVERT,
    CONTACTS_VIEW, CONTACTS_CREATE, CONTACTS_UPDATE,
    USERS_VIEW, ACTIVITIES_VIEW,
)
from leadcrm.models.lead import LeadSource, LeadStatus
from leadcrm.models.role import Role
from leadcrm.services.pipeline_config import DEFAULT_STAGES

logger = logging.getLogger(__name__)

DEFAULT_ROLES = [
    {
        "name": "super_admin",
        "display_name": "Super Administrator",
        "description": "Unrestricted access",
        "permissions": [WILDCARD],
    },
    {
        "name": "admin",
        "display_name": "Administrator",
        "description": "Manages users, leads and contacts",
        "permissions": list(ALL_PERMISSIONS),
    },
    {
        "name": "manager",
        "display_name": "Manager",
        "description": "Runs the sales pipeline",
        "permissions": [
            LEADS_VIEW, LEADS_CREATE, LEADS_UPDATE, LEADS_CONVERT,
            CONTACTS_VIEW, CONTACTS_CREATE, CONTACTS_UPDATE,
            USERS_VIEW, ACTIVITIES_VIEW,
        ],
    },
    {
        "name": "employee",
        "display_name": "Employee",
        "description": "Works assigned leads",
        "permissions": [LEADS_VIEW, LEADS_CREATE, LEADS_UPDATE, CONTACTS_VIEW],
    },
]

DEFAULT_SOURCES = [
    ("Website Form", "Leads from website contact forms"),
    ("LinkedIn", "Leads from LinkedIn outreach"),
    ("Trade Show", "Leads from trade shows and events"),
    ("Referral", "Leads from customer referrals"),
    ("Cold Calling", "Leads from cold calling efforts"),
]


async def seed_reference_data(db: AsyncSession) -> None:
    """Insert missing roles, stages and sources. Does not commit."""
    existing_roles = set((await db.execute(select(Role.name))).scalars().all())
    for role_data in DEFAULT_ROLES:
        if role_data["name"] not in existing_roles:
            db.add(Role(is_active=True, **role_data))
            logger.info("Seeded role %s", role_data["name"])

    existing_stages = set((await db.execute(select(LeadStatus.slug))).scalars().all())
    for stage in DEFAULT_STAGES:
        if stage.slug not in existing_stages:
            db.add(LeadStatus(
                slug=stage.slug,
                name=stage.name,
                color=stage.color,
                sort_order=stage.sort_order,
                is_active=True,
            ))

    existing_sources = set((await db.execute(select(LeadSource.name))).scalars().all())
    for name, description in DEFAULT_SOURCES:
        if name not in existing_sources:
            db.add(LeadSource(name=name, description=description, is_active=True))

    await db.flush()
