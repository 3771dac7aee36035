"""
Error taxonomy shared by services and the HTTP layer.

Services raise these; ``app.main`` renders them as ``{"error": message}``
with the matching status code. Messages are safe to show to callers.
"""
from typing import Optional


class AppError(Exception):
    """Base class for errors that map to an HTTP response."""
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class MissingFieldError(ValidationError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required field: {field}")


class AuthError(AppError):
    status_code = 401
    default_message = "Authentication required"


class UnauthenticatedError(AuthError):
    default_message = "Invalid credentials"


class TokenExpiredError(AuthError):
    default_message = "Token expired"


class MalformedTokenError(AuthError):
    default_message = "Invalid token"


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "Insufficient permissions"


class AuthStorageError(AuthError):
    """Session could not be persisted; the login attempt fails."""
    status_code = 500
    default_message = "Login failed"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class LeadError(AppError):
    status_code = 409
    default_message = "Lead operation rejected"


class InvalidTransitionError(LeadError):
    def __init__(self, from_stage: str, to_stage: str, reason: Optional[str] = None):
        self.from_stage = from_stage
        self.to_stage = to_stage
        message = f"Cannot transition from '{from_stage}' to '{to_stage}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class LockoutError(AppError):
    status_code = 423
    default_message = "Account locked due to too many failed attempts"


class StorageError(AppError):
    status_code = 500
    default_message = "Storage unavailable, please retry"


class StorageTimeoutError(StorageError):
    default_message = "Storage operation timed out"


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"
