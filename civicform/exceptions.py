"""
CivicForm Middleware - Custom Exception Hierarchy
==================================================

What:  Application-specific exceptions for each error scenario.
Why:   Global exception handlers (registered in main.py) map each type to an
       HTTP status and a structured JSON body, so route handlers never build
       error responses by hand.
How:   Each exception carries a user-safe `message` and a `context` dict that
       is logged server-side but only partially returned to the client.

Exception Hierarchy:
    CivicFormError (base)
    ├── ValidationError          → 400 Bad Request (no store mutation attempted)
    ├── AuthenticationError      → 401 Unauthorized (before any handler logic)
    ├── NotFoundError            → 404 Not Found (echoes the missing key)
    ├── DatabaseError            → 500 Internal Server Error (generic body)
    └── RateLimitExceededError   → 429 Too Many Requests (retry_after hint)

None of these are retried by the middleware. Retry belongs to the caller or
the polling collector.
"""

from typing import Any, Dict, Optional


class CivicFormError(Exception):
    """
    Base exception for all CivicForm application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged; only some handlers return it)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CivicFormError):
    """
    Raised when client input fails validation.

    When:    Empty structure body, missing submission_data, unknown status value,
             malformed filters.
    HTTP:    400 Bad Request
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


class AuthenticationError(CivicFormError):
    """
    Raised when the X-Auth-Token header is missing or does not match.

    HTTP:    401 Unauthorized
    The response never says which gate failed or whether a secret is configured.
    """

    def __init__(
        self,
        message: str = "Unauthorized",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(CivicFormError):
    """
    Raised when a requested resource does not exist.

    When:    GET structure for an unknown form id, PATCH status for an unknown
             submission.
    HTTP:    404 Not Found
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
        self.resource = resource
        self.resource_id = resource_id


class DatabaseError(CivicFormError):
    """
    Raised when a store operation fails unexpectedly.

    HTTP:    500 Internal Server Error

    The message returned to the client is always generic. Driver errors,
    SQL text and constraint names are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(CivicFormError):
    """
    Raised when a client exceeds the per-IP request ceiling.

    HTTP:    429 Too Many Requests, with a Retry-After header.
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Too many requests from this IP. Please wait {retry_after} seconds "
            f"before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
