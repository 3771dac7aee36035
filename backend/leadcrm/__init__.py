"""
LeadCRM backend.

Authentication, role-based permissions, the lead pipeline engine and the
activity log behind a FastAPI application.
"""
__version__ = "1.0.0"
