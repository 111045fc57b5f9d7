"""Admin access request records and their status lifecycle."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from school_admin.core.validators import is_valid_timestamp


class AdminStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVOKED = "revoked"


# Revoked and rejected requests may be approved again; nothing returns to pending.
ALLOWED_TRANSITIONS: dict[AdminStatus, frozenset[AdminStatus]] = {
    AdminStatus.PENDING: frozenset({AdminStatus.APPROVED, AdminStatus.REJECTED}),
    AdminStatus.APPROVED: frozenset({AdminStatus.REVOKED}),
    AdminStatus.REJECTED: frozenset({AdminStatus.APPROVED}),
    AdminStatus.REVOKED: frozenset({AdminStatus.APPROVED}),
}

AUDIT_FIELDS: dict[AdminStatus, tuple[str, str]] = {
    AdminStatus.APPROVED: ("approved_at", "approved_by"),
    AdminStatus.REJECTED: ("rejected_at", "rejected_by"),
    AdminStatus.REVOKED: ("revoked_at", "revoked_by"),
}

_DATE_FIELDS = (
    "requested_at",
    "approved_at",
    "rejected_at",
    "revoked_at",
    "completed_at",
)


class AdminRequest(BaseModel):
    """One person's request for administrative access."""

    id: str = Field(min_length=1)
    first_name: str
    last_name: str
    email: str = Field(min_length=3)
    phone: str
    status: AdminStatus
    requested_at: str
    uid: str | None = None
    credential_hash: str = ""
    approved_at: str | None = None
    approved_by: str | None = None
    rejected_at: str | None = None
    rejected_by: str | None = None
    revoked_at: str | None = None
    revoked_by: str | None = None
    completed_at: str | None = None

    @field_validator(*_DATE_FIELDS)
    @classmethod
    def _check_timestamp(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not is_valid_timestamp(value):
            raise ValueError("must be an ISO-8601 timestamp")
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AdminRequestStats(BaseModel):
    """Request counts per status."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    revoked: int = 0


class AdminRequestSubmission(BaseModel):
    """Public access request payload."""

    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: str = Field(min_length=10)
    password: str = Field(min_length=1)
    confirm_password: str = Field(min_length=1)


class CompleteRegistrationRequest(BaseModel):
    """Approved requester finishing account setup."""

    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
