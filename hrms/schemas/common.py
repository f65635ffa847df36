"""
HRMS Core - Common Schemas

The response envelope shared by every endpoint.
"""

from datetime import datetime, timezone
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ErrorInfo(BaseModel):
    """Error object inside a failed envelope."""
    code: Optional[str] = None
    message: str
    details: Optional[Any] = None


class PaginationMeta(BaseModel):
    """Paging information for list endpoints."""
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")
    has_next: bool = Field(alias="hasNext")
    has_prev: bool = Field(alias="hasPrev")


class ApiResponse(BaseModel, Generic[T]):
    """Uniform response envelope."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None
    meta: Optional[PaginationMeta] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PaginatedResponse(ApiResponse[List[T]], Generic[T]):
    """Envelope for list endpoints; meta is always present."""
    meta: PaginationMeta


class MessageData(BaseModel):
    """Payload for endpoints that only report an outcome."""
    message: str
