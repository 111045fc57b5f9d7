"""Pydantic models for authentication domain."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, Field


class AuthAccount(BaseModel):
    """Persisted authenticable account."""

    uid: str
    email: str
    password_hash: str
    disabled: bool = False
    created_at: str


class AuthIdentity(BaseModel):
    """Stable identity of an authenticated account."""

    uid: str
    email: str


class AuthSession(BaseModel):
    """Process-local signed-in session."""

    session_id: str
    identity: AuthIdentity
    token: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class AuthStateChange:
    """Sign-in or sign-out transition delivered to auth state observers."""

    session: AuthSession
    signed_in: bool


class LoginRequest(BaseModel):
    """Login request payload."""

    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class LoginActivityStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"


class LoginActivity(BaseModel):
    """Audit row for one login attempt."""

    admin_id: str = ""
    email: str
    login_time: str
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    status: LoginActivityStatus
    failure_reason: str | None = None


@dataclass(frozen=True)
class ClientInfo:
    """Caller metadata captured for login auditing."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"


class SecurityEventType(StrEnum):
    SUSPICIOUS_LOGIN = "suspicious_login"
    MULTIPLE_FAILURES = "multiple_failures"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CSRF_REJECTED = "csrf_rejected"
    ACCESS_DENIED = "access_denied"
    SESSION_HIJACK_ATTEMPT = "session_hijack_attempt"


class SecurityEventSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityEvent(BaseModel):
    """Security-relevant occurrence awaiting (or past) reviewer triage."""

    id: str
    type: SecurityEventType
    severity: SecurityEventSeverity
    occurred_at: str
    email: str = ""
    admin_id: str = ""
    details: dict[str, str | int | float | bool | None] = Field(default_factory=dict)
    correlation_id: str = ""
    resolved: bool = False
    resolved_at: str | None = None
    resolved_by: str | None = None


class SecurityEventSummary(BaseModel):
    """Counts over a recent window of security events."""

    window_hours: int
    total: int
    critical: int
    high: int
    unresolved: int
    by_type: dict[str, int] = Field(default_factory=dict)
