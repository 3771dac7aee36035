"""
SQLAlchemy models for LeadCRM.

- Identity: users, roles, role assignments, sessions
- Pipeline: leads, lead statuses, lead sources, lead activities
- Contacts
- Audit: activity log
- Settings
"""
from leadcrm.models.user import User, UserStatus
from leadcrm.models.role import Role, UserRole
from leadcrm.models.session import UserSession
from leadcrm.models.contact import Contact
from leadcrm.models.lead import Lead, LeadStatus, LeadSource, LeadTemperature, LeadPriority
from leadcrm.models.lead_activity import LeadActivity, ActivityOutcome
from leadcrm.models.activity import ActivityLogEntry
from leadcrm.models.app_setting import AppSetting

__all__ = [
    # Identity
    "User",
    "UserStatus",
    "Role",
    "UserRole",
    "UserSession",
    # Contacts
    "Contact",
    # Pipeline
    "Lead",
    "LeadStatus",
    "LeadSource",
    "LeadTemperature",
    "LeadPriority",
    "LeadActivity",
    "ActivityOutcome",
    # Audit
    "ActivityLogEntry",
    # Settings
    "AppSetting",
]
