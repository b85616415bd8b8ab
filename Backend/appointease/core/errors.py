"""
Error taxonomy shared by tenant resolution and theme management.

Read paths (tenant resolution, effective theme) catch these and degrade to
"no tenant" or the fallback theme. Write paths (theme mutations) let them
propagate; the HTTP layer maps them onto the standard error envelope.
"""

from typing import Any, Optional


class ErrorCodes:
    """Standard error codes for API responses."""

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"

    # Authorization errors (403)
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Conflict errors (409)
    INVALID_OPERATION = "INVALID_OPERATION"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"


class AppointEaseError(Exception):
    """Base class for domain errors."""

    status_code: int = 500
    code: str = ErrorCodes.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(AppointEaseError):
    """A lookup missed. Always recoverable on read paths."""

    status_code = 404
    code = ErrorCodes.NOT_FOUND


class AuthenticationRequiredError(AppointEaseError):
    """The operation needs a signed-in identity and the request carries none."""

    status_code = 401
    code = ErrorCodes.AUTHENTICATION_REQUIRED


class AuthorizationDeniedError(AppointEaseError):
    """The identity may not act on this business."""

    status_code = 403
    code = ErrorCodes.AUTHORIZATION_DENIED


class InvalidOperationError(AppointEaseError):
    """The request is well-formed but not allowed in the current state."""

    status_code = 409
    code = ErrorCodes.INVALID_OPERATION


class UpstreamUnavailableError(AppointEaseError):
    """The data store could not be reached or did not answer in time."""

    status_code = 503
    code = ErrorCodes.UPSTREAM_UNAVAILABLE


class InvariantViolationError(AppointEaseError):
    """Stored data breaks a per-tenant invariant (e.g. two active themes)."""

    status_code = 500
    code = ErrorCodes.INVARIANT_VIOLATION
