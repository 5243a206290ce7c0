"""
Quilkalam Backend — Shared Pydantic Schemas
============================================

What:  Base model and envelope types shared by every API module.
How:   `CamelModel` gives all request/response schemas camelCase wire names
       (`wordCount`, `parentItemId`) while keeping snake_case attributes in
       Python. Inputs are accepted in either spelling.
Who:   Subclassed by the per-domain schema modules; ErrorResponse and
       HealthResponse are used directly by main.py and routes/health.py.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API schemas: camelCase aliases, population by field name."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class SuccessResponse(CamelModel):
    success: bool = True


class Pagination(CamelModel):
    """
    Page metadata returned alongside list results.

    total_pages is ceil(total / limit); zero when nothing matches.
    """
    page: int = Field(description="1-based page number")
    limit: int = Field(description="Page size used for this query")
    total: int = Field(description="Rows matching the filters across all pages")
    total_pages: int = Field(description="Number of pages at this page size")


# ══════════════════════════════════════════════════════════════════════════
# Error / Health Models — snake_case, shared with infrastructure tooling
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    What:  Standardized error body for all API errors.

    Fields:
        error: Machine-readable error code (e.g., "validation_error", "not_found")
        message: Human-readable description for display to users
        details: Optional extra context (e.g., which field failed validation)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "forbidden",
            "message": "You do not have permission to modify this resource",
            "details": {"project_id": "550e8400-e29b-41d4-a716-446655440000"},
            "request_id": "0f8fad5b-d9cb-469f-a165-70867728950e"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Returned by GET /health for monitoring and load balancer checks."""
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")
