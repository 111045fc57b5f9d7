"""Public API response contracts."""

from school_admin.api.contracts.models import (
    AdminRequestListResponse,
    AdminRequestResponse,
    ApiErrorResponse,
    AuthMeResponse,
    AuthSessionResponse,
    AuthUserResponse,
    CleanupResponse,
    CsrfTokenResponse,
    DeleteAdminRequestResponse,
    HealthResponse,
    LogoutResponse,
    PasswordResetConfirmRequest,
    PasswordResetConfirmResponse,
    PasswordResetRequest,
    PasswordResetResponse,
    RateLimitInfoResponse,
    SessionActivityRequest,
    SessionActivityResponse,
    SessionExtendResponse,
    SubmitAdminRequestResponse,
)

__all__ = [
    "AdminRequestListResponse",
    "AdminRequestResponse",
    "ApiErrorResponse",
    "AuthMeResponse",
    "AuthSessionResponse",
    "AuthUserResponse",
    "CleanupResponse",
    "CsrfTokenResponse",
    "DeleteAdminRequestResponse",
    "HealthResponse",
    "LogoutResponse",
    "PasswordResetConfirmRequest",
    "PasswordResetConfirmResponse",
    "PasswordResetRequest",
    "PasswordResetResponse",
    "RateLimitInfoResponse",
    "SessionActivityRequest",
    "SessionActivityResponse",
    "SessionExtendResponse",
    "SubmitAdminRequestResponse",
]
