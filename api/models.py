"""
Response schemas for the FastAPI application.

Every response uses the ``{success, ...}`` envelope; list responses add the
page item count and pagination metadata.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from catalog.models import Pagination, QueryResult


class ListResponse(BaseModel):
    """Paginated list response."""
    success: bool = Field(True)
    count: int = Field(..., description="Items on this page")
    pagination: Pagination = Field(..., description="Pagination metadata")
    data: List[Dict[str, Any]] = Field(..., description="Page items")
    message: Optional[str] = Field(None, description="Set when results are degraded")

    @classmethod
    def from_result(cls, result: QueryResult) -> "ListResponse":
        return cls(count=result.count, pagination=result.pagination, data=result.items, message=result.message)


class CollectionResponse(BaseModel):
    """Unpaginated list response used by per-parent endpoints."""
    success: bool = Field(True)
    count: int = Field(..., description="Number of items")
    data: List[Dict[str, Any]] = Field(..., description="Items")
    message: Optional[str] = Field(None)

    @classmethod
    def from_items(cls, items: List[Dict[str, Any]], message: Optional[str] = None) -> "CollectionResponse":
        return cls(count=len(items), data=items, message=message)


class ItemResponse(BaseModel):
    """Single-entity response."""
    success: bool = Field(True)
    data: Dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = Field(None)


class TokenResponse(BaseModel):
    """Session token response."""
    success: bool = Field(True)
    token: str = Field(..., description="Bearer token")
    expires_at: datetime = Field(..., description="Token expiry (UTC)")


class ErrorResponse(BaseModel):
    """Error response model."""
    success: bool = Field(False)
    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Machine-readable error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
