"""Common schemas used across the application."""

from typing import Generic, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response wrapper.

    Usage:
        response_model=PaginatedResponse[ShipmentSummary]
    """
    items: list[T]
    total: int
    limit: int
    offset: int


class WarningsMixin(BaseModel):
    """Non-fatal side-effect failures reported alongside a success."""
    warnings: list[str] = []
