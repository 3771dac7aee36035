"""
Common schemas used across the application.
"""
from math import ceil
from pydantic import BaseModel


class Pagination(BaseModel):
    """Pagination block returned by every list endpoint."""
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            current_page=page,
            total_pages=ceil(total / limit) if total > 0 else 0,
            total_items=total,
            items_per_page=limit,
        )


class SuccessResponse(BaseModel):
    success: bool = True


class MessageResponse(SuccessResponse):
    """Simple message response."""
    message: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Health check response."""
    code: int = 200
    message: str = "API is healthy."
