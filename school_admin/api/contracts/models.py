"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from school_admin.admins.models import AdminRequest, AdminStatus
from school_admin.auth.models import AuthSession


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    error_code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]
    storage: Literal["mongo", "local"]


class AdminRequestResponse(BaseModel):
    """Admin request as exposed to reviewers; never carries the credential hash."""

    id: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    phone: str
    status: AdminStatus
    requested_at: str
    uid: str | None = None
    approved_at: str | None = None
    approved_by: str | None = None
    rejected_at: str | None = None
    rejected_by: str | None = None
    revoked_at: str | None = None
    revoked_by: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_domain(cls, request: AdminRequest) -> "AdminRequestResponse":
        payload = request.model_dump(exclude={"credential_hash"})
        return cls(**payload, full_name=request.full_name)


class AdminRequestListResponse(BaseModel):
    """Admin request listing payload."""

    items: list[AdminRequestResponse]


class SubmitAdminRequestResponse(BaseModel):
    """Public acknowledgement of a submitted access request."""

    id: str
    status: AdminStatus
    message: str


class CleanupResponse(BaseModel):
    """Invalid record cleanup result."""

    removed: int


class DeleteAdminRequestResponse(BaseModel):
    """Deletion result payload."""

    id: str
    deleted: bool


class AuthUserResponse(BaseModel):
    """Authenticated admin summary."""

    uid: str
    email: str
    first_name: str = ""
    last_name: str = ""
    status: AdminStatus | None = None


class AuthSessionResponse(BaseModel):
    """Authentication session response payload."""

    access_token: str
    token_type: Literal["bearer"] = "bearer"
    session_id: str
    expires_at: int
    csrf_token: str
    user: AuthUserResponse

    @classmethod
    def from_domain(
        cls, session: AuthSession, admin: AdminRequest, csrf_token: str
    ) -> "AuthSessionResponse":
        return cls(
            access_token=session.token,
            session_id=session.session_id,
            expires_at=session.expires_at,
            csrf_token=csrf_token,
            user=AuthUserResponse(
                uid=session.identity.uid,
                email=session.identity.email,
                first_name=admin.first_name,
                last_name=admin.last_name,
                status=admin.status,
            ),
        )


class AuthMeResponse(BaseModel):
    """Current user endpoint response payload."""

    user: AuthUserResponse
    session_id: str
    expires_at: int


class LogoutResponse(BaseModel):
    """Logout response payload."""

    status: Literal["ok"]


class CsrfTokenResponse(BaseModel):
    """Per-session CSRF token payload."""

    csrf_token: str


class RateLimitInfoResponse(BaseModel):
    """Diagnostic view of failed attempts for an email."""

    count: int
    time_until_reset: float | None = None


class SessionActivityRequest(BaseModel):
    """UI events observed by the client since its last report."""

    events: list[str] = Field(default_factory=list, max_length=100)


class SessionActivityResponse(BaseModel):
    """Result of an activity report."""

    accepted: int
    state: str
    seconds_until_timeout: float | None = None


class SessionExtendResponse(BaseModel):
    """Result of an explicit session extension."""

    extended: bool
    state: str
    seconds_until_timeout: float | None = None


class PasswordResetRequest(BaseModel):
    """Forgot-password form payload."""

    email: str = Field(min_length=3, max_length=254)


class PasswordResetResponse(BaseModel):
    """Uniform answer to a reset request; never reveals whether the email exists."""

    message: str


class PasswordResetConfirmRequest(BaseModel):
    """New password chosen from a reset link."""

    token: str = Field(min_length=1, max_length=2048)
    password: str = Field(min_length=1)
    confirm_password: str = Field(min_length=1)


class PasswordResetConfirmResponse(BaseModel):
    status: Literal["ok"]
    email: str
