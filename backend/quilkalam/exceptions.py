"""
Quilkalam Backend — Custom Exception Hierarchy
===============================================

What:  Defines application-specific exceptions for different error scenarios.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services, dependencies and middleware; caught by global handlers.
When:  During request processing when recoverable errors occur.

Exception Hierarchy:
    QuilkalamError (base)
    ├── ValidationError          → 400 Bad Request (client can fix)
    ├── UnauthenticatedError     → 401 Unauthorized (missing/invalid bearer token)
    ├── ForbiddenError           → 403 Forbidden (authenticated, not the owner)
    ├── NotFoundError            → 404 Not Found (absent or not publicly visible)
    ├── ConflictError            → 409 Conflict (duplicate unique key)
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── UpstreamServiceError     → 502 Bad Gateway (identity/blob collaborator failed)
    └── DatabaseError            → 500 Internal Server Error (storage failure)

No partial success is ever reported: a request either completes its whole
effect (the session commits) or one of these propagates and the session
rolls back.
"""

from typing import Any, Dict, Optional


class QuilkalamError(Exception):
    """
    Base exception for all Quilkalam application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged; only returned for 4xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(QuilkalamError):
    """
    Raised when client input fails validation.

    When:    Missing fields, empty updates, self-follow, malformed images.
    HTTP:    400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "No fields to update",
            "details": {"field": "body"}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnauthenticatedError(QuilkalamError):
    """
    Raised when the bearer credential is missing, malformed, expired, or the
    login credentials do not match an active user.

    HTTP:    401 Unauthorized (with WWW-Authenticate: Bearer)
    """

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(QuilkalamError):
    """
    Raised when an authenticated caller touches a resource they do not own.

    When:    Non-owner edits a project or its items, deletes someone else's comment.
    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "You do not have permission to modify this resource",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(QuilkalamError):
    """
    Raised when a requested resource does not exist.

    When:    Unknown project/item/comment/user ids, or a private project read
             through a public path.
    HTTP:    404 Not Found

    SQLAlchemy returns None for missing records; services convert that None
    into this exception so routes never inspect query results.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(QuilkalamError):
    """
    Raised when a write collides with a unique constraint.

    When:    Phone number already registered; concurrent duplicate like/follow.
    HTTP:    409 Conflict
    """

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamServiceError(QuilkalamError):
    """
    Raised when a collaborator (identity provider, blob store) fails after
    all retries.

    HTTP:    502 Bad Gateway
    """

    def __init__(
        self,
        message: str = "An upstream service is temporarily unavailable",
        service: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if service:
            ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.service = service


class DatabaseError(QuilkalamError):
    """
    Raised when database operations fail unexpectedly.

    When:    Connection lost mid-query, unclassified constraint violation, deadlock.
    HTTP:    500 Internal Server Error

    Security Note:
        The message returned to the client is always generic. The SQL error is
        logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(QuilkalamError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests (with Retry-After header)
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
