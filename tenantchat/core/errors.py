"""Domain-level errors.

Services raise these; ``tenantchat.main`` maps each class to an HTTP status and
renders ``{"code", "message", "details"}``.
"""

from typing import Any


class DomainError(Exception):
    """Base domain error."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """Malformed or missing input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(DomainError):
    """Missing record, or one the caller may not know exists."""

    status_code = 404
    code = "NOT_FOUND"


class PermissionDenied(DomainError):
    """Caller is known but not allowed to perform the action."""

    status_code = 403
    code = "PERMISSION_DENIED"


class ProviderError(DomainError):
    """Upstream completion provider failed, timed out or rejected the call."""

    status_code = 502
    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        partial_text: str = "",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.partial_text = partial_text


class InternalError(DomainError):
    """Store failure or server misconfiguration."""

    status_code = 500
    code = "INTERNAL_ERROR"
