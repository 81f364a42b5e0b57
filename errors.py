"""
Error types raised by the API.

Each error carries the HTTP status and machine-readable code the exception
handlers in middleware.py render.
"""

from typing import Any, Mapping, Optional


class ApiError(Exception):
    """Base class for failures that map onto a JSON error response.

    Attributes:
        message: human-readable message
        details: optional mapping with extra context
        http_status: status code used by the handler
        code: machine-readable error code
    """

    http_status = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[Mapping[str, Any]] = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload

    def __str__(self) -> str:
        return self.message


class UnauthenticatedError(ApiError):
    """No session token was presented."""

    http_status = 401
    code = "UNAUTHENTICATED"
    default_message = "Unauthorized Access: No Token"


class InvalidTokenError(ApiError):
    """The session token failed signature or expiry verification."""

    http_status = 403
    code = "INVALID_TOKEN"
    default_message = "Unauthorized Access: Invalid Token"


class ForbiddenError(ApiError):
    http_status = 403
    code = "FORBIDDEN"
    default_message = "Forbidden Access"


class ValidationError(ApiError):
    """A required field is missing or malformed."""

    http_status = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class NotFoundError(ApiError):
    http_status = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class ConflictError(ApiError):
    """Duplicate action: already liked, already requested, already registered."""

    http_status = 400
    code = "CONFLICT"
    default_message = "Conflict"


class UpstreamError(ApiError):
    """The payment provider rejected the call or could not be reached."""

    http_status = 500
    code = "UPSTREAM_ERROR"
    default_message = "Payment provider error"


class InternalError(ApiError):
    pass
