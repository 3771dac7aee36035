"""
Version 1 API routers.
"""
from fastapi import APIRouter

from leadcrm.api.v1.auth import router as auth_router
from leadcrm.api.v1.users import router as users_router
from leadcrm.api.v1.leads import router as leads_router
from leadcrm.api.v1.contacts import router as contacts_router
from leadcrm.api.v1.activities import router as activities_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(users_router, prefix="/users", tags=["users"])
api_router.include_router(leads_router, prefix="/leads", tags=["leads"])
api_router.include_router(contacts_router, prefix="/contacts", tags=["contacts"])
api_router.include_router(activities_router, prefix="/activities", tags=["activities"])

__all__ = ["api_router"]
