"""Error envelope used by every admin API response that fails."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import HTTPException

from school_admin.core.errors import (
    AuthenticationError,
    AuthorizationError,
    DuplicateRequestError,
    InfrastructureError,
    InvalidTransitionError,
    NotFoundError,
    RateLimitError,
    SecurityAnomalyError,
    ValidationError,
    WorkflowError,
)


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_MISSING_TOKEN = "AUTH_MISSING_TOKEN"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    CSRF_REJECTED = "CSRF_REJECTED"
    ADMIN_REQUEST_DUPLICATE = "ADMIN_REQUEST_DUPLICATE"
    ADMIN_REQUEST_NOT_FOUND = "ADMIN_REQUEST_NOT_FOUND"
    ADMIN_REQUEST_INVALID_TRANSITION = "ADMIN_REQUEST_INVALID_TRANSITION"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope."""

    def __init__(
        self,
        *,
        status_code: int,
        error_code: ApiErrorCode,
        message: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Build an HTTP exception with standard detail structure."""
        super().__init__(
            status_code=status_code,
            detail={"error_code": str(error_code), "message": message},
            headers=headers,
        )


def to_error_payload(detail: Any, status_code: int) -> dict[str, str]:
    """Normalize HTTP exception detail into stable error payload."""
    if isinstance(detail, dict):
        error_code = str(detail.get("error_code") or f"HTTP_{status_code}")
        message = str(detail.get("message") or detail.get("detail") or "HTTP error")
        return {"error_code": error_code, "message": message}
    return {
        "error_code": f"HTTP_{status_code}",
        "message": str(detail or "HTTP error"),
    }


_WORKFLOW_ERROR_STATUS: dict[type[WorkflowError], tuple[int, ApiErrorCode]] = {
    ValidationError: (422, ApiErrorCode.VALIDATION_ERROR),
    AuthenticationError: (401, ApiErrorCode.AUTH_INVALID_CREDENTIALS),
    RateLimitError: (429, ApiErrorCode.AUTH_RATE_LIMITED),
    DuplicateRequestError: (409, ApiErrorCode.ADMIN_REQUEST_DUPLICATE),
    AuthorizationError: (403, ApiErrorCode.AUTH_FORBIDDEN),
    InfrastructureError: (503, ApiErrorCode.SERVICE_UNAVAILABLE),
    SecurityAnomalyError: (403, ApiErrorCode.CSRF_REJECTED),
    NotFoundError: (404, ApiErrorCode.ADMIN_REQUEST_NOT_FOUND),
    InvalidTransitionError: (409, ApiErrorCode.ADMIN_REQUEST_INVALID_TRANSITION),
}


def api_error_from_workflow(exc: WorkflowError) -> ApiError:
    """Translate a domain error into its HTTP envelope."""
    status_code, error_code = 500, ApiErrorCode.INTERNAL_SERVER_ERROR
    for cls in type(exc).__mro__:
        if cls in _WORKFLOW_ERROR_STATUS:
            status_code, error_code = _WORKFLOW_ERROR_STATUS[cls]
            break

    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after_seconds:
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return ApiError(
        status_code=status_code,
        error_code=error_code,
        message=exc.message,
        headers=headers,
    )
