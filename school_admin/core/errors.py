"""Domain error taxonomy shared by auth and admin request services."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for errors surfaced to API callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Malformed or missing input."""


class AuthenticationError(WorkflowError):
    """Credential mismatch, unknown account or unusable auth provider."""


class RateLimitError(WorkflowError):
    """Too many attempts for an identifier."""

    def __init__(self, message: str, *, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class DuplicateRequestError(WorkflowError):
    """An admin access request already exists for the email or phone."""


class AuthorizationError(WorkflowError):
    """Authenticated identity is not an approved admin."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class InfrastructureError(WorkflowError):
    """Storage backend unreachable or refusing the operation."""


class SecurityAnomalyError(WorkflowError):
    """CSRF token or origin mismatch."""

    def __init__(self, message: str = "Security check failed") -> None:
        super().__init__(message)


class NotFoundError(WorkflowError):
    """Referenced record does not exist."""


class InvalidTransitionError(WorkflowError):
    """Requested status change is not allowed from the current status."""
