"""Login orchestration: validation, throttling, authentication, authorization."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from school_admin.admins.models import AdminRequest, AdminStatus
from school_admin.admins.repository import AdminRequestRepository, MalformedAdminRecord
from school_admin.auth.activity_log import LoginActivityLog
from school_admin.auth.authenticator import (
    AuthProviderCode,
    AuthProviderError,
    Authenticator,
)
from school_admin.auth.models import (
    AuthSession,
    ClientInfo,
    SecurityEventSeverity,
    SecurityEventType,
)
from school_admin.auth.rate_limiter import (
    REASON_EXTENDED_LOCKOUT,
    AttemptInfo,
    PersistentRateLimiter,
)
from school_admin.auth.security_events import SecurityEventLog
from school_admin.core.errors import (
    AuthenticationError,
    AuthorizationError,
    InfrastructureError,
    RateLimitError,
)
from school_admin.core.validators import normalize_email

LOGGER = logging.getLogger(__name__)

MSG_INVALID_CREDENTIALS = "Invalid email or password"
MSG_NOT_REGISTERED = (
    "This email is not registered as an admin or your access is pending approval."
)

# (log reason, user-facing message) per provider error code.
_PROVIDER_FAILURES: dict[AuthProviderCode, tuple[str, str]] = {
    AuthProviderCode.INVALID_CREDENTIAL: ("Invalid credentials", MSG_INVALID_CREDENTIALS),
    AuthProviderCode.USER_NOT_FOUND: ("Invalid credentials", MSG_INVALID_CREDENTIALS),
    AuthProviderCode.WRONG_PASSWORD: ("Invalid credentials", MSG_INVALID_CREDENTIALS),
    AuthProviderCode.USER_DISABLED: ("Account disabled", "This account has been disabled"),
    AuthProviderCode.NETWORK_REQUEST_FAILED: (
        "Network error",
        "Network error. Please check your connection and try again.",
    ),
}

# None means access is granted.
_STATUS_DENIALS: dict[AdminStatus, tuple[str, str] | None] = {
    AdminStatus.APPROVED: None,
    AdminStatus.PENDING: ("pending", "Your admin access request is pending approval."),
    AdminStatus.REJECTED: ("rejected", "Your admin access request has been rejected."),
    AdminStatus.REVOKED: ("revoked", "Your admin access has been revoked."),
}

# Denials that suggest misuse rather than an unfinished request.
_HIGH_SEVERITY_DENIALS = frozenset({"revoked", "email-mismatch", "invalid-record"})


def rate_limit_key(email: str) -> str:
    return f"email:{email}"


@dataclass(frozen=True)
class LoginResult:
    session: AuthSession
    admin: AdminRequest


class LoginOrchestrator:
    """Run one login attempt end to end."""

    def __init__(
        self,
        *,
        authenticator: Authenticator,
        rate_limiter: PersistentRateLimiter,
        admins: AdminRequestRepository,
        activity_log: LoginActivityLog,
        security_events: SecurityEventLog,
    ) -> None:
        self._authenticator = authenticator
        self._rate_limiter = rate_limiter
        self._admins = admins
        self._activity = activity_log
        self._security_events = security_events

    async def handle_login(
        self, email: str, password: str, *, client: ClientInfo | None = None
    ) -> LoginResult:
        """Authenticate and authorize an admin, or raise a user-safe error."""
        normalized_email = normalize_email(email)
        key = rate_limit_key(normalized_email)

        limit = await self._rate_limiter.is_rate_limited(key)
        if limit.is_limited:
            remaining = limit.time_remaining or 0.0
            minutes = math.ceil(remaining / 60)
            reason = limit.reason or "Too many failed attempts"
            await self._activity.log_failure(
                normalized_email, f"Rate limited: {reason}", client=client
            )
            if reason == REASON_EXTENDED_LOCKOUT:
                event = (SecurityEventType.MULTIPLE_FAILURES, SecurityEventSeverity.HIGH)
            else:
                event = (SecurityEventType.RATE_LIMIT_EXCEEDED, SecurityEventSeverity.MEDIUM)
            await self._security_events.record(
                *event,
                email=normalized_email,
                details={"reason": reason, "ip_address": client.ip_address if client else ""},
            )
            raise RateLimitError(
                f"{reason}. Please try again in {minutes} minutes.",
                retry_after_seconds=math.ceil(remaining),
            )

        try:
            session = await self._authenticator.sign_in(normalized_email, password)
        except AuthProviderError as exc:
            await self._rate_limiter.record_failed_attempt(key)
            await self._raise_for_provider_error(exc, normalized_email, client)

        admin = await self._authorize(session, normalized_email, client)

        await self._rate_limiter.clear_attempts(key)
        await self._activity.log_success(session.identity.uid, normalized_email, client=client)
        return LoginResult(session=session, admin=admin)

    def logout(self, session_id: str) -> None:
        self._authenticator.sign_out(session_id)

    async def get_rate_limit_info(self, email: str) -> AttemptInfo:
        return await self._rate_limiter.get_attempt_info(rate_limit_key(normalize_email(email)))

    async def _raise_for_provider_error(
        self, exc: AuthProviderError, email: str, client: ClientInfo | None
    ) -> None:
        if exc.code is AuthProviderCode.TOO_MANY_REQUESTS:
            await self._activity.log_failure(email, "Provider rate limited", client=client)
            raise RateLimitError(
                "Account temporarily disabled due to many failed login attempts. "
                "Try again later or reset your password."
            ) from exc

        log_reason, message = _PROVIDER_FAILURES.get(
            exc.code, (f"Provider error: {exc.code}", "Authentication failed")
        )
        await self._activity.log_failure(email, log_reason, client=client)
        raise AuthenticationError(message) from exc

    async def _authorize(
        self, session: AuthSession, email: str, client: ClientInfo | None
    ) -> AdminRequest:
        try:
            admin = await self._lookup_admin(session.identity.uid, email)
        except MalformedAdminRecord:
            await self._deny(
                session, email, "Invalid admin data", "invalid-record",
                "Invalid admin record. Please contact support.", client,
            )
        except InfrastructureError as exc:
            self._authenticator.sign_out(session.session_id)
            await self._activity.log_failure(email, "Admin lookup failed", client=client)
            raise AuthenticationError("Authentication failed") from exc

        if admin is None:
            await self._deny(
                session, email,
                "Email not registered as admin or access pending approval",
                "not-registered", MSG_NOT_REGISTERED, client,
            )
        if admin.email.lower() != session.identity.email.lower():
            await self._deny(
                session, email, "Email mismatch", "email-mismatch",
                "Security error. Please contact support.", client,
            )

        denial = _STATUS_DENIALS[admin.status]
        if denial is not None:
            reason, message = denial
            await self._deny(session, email, f"Admin access {reason}", reason, message, client)
        return admin

    async def _lookup_admin(self, uid: str, email: str) -> AdminRequest | None:
        admin = await self._admins.find_by_uid(uid)
        if admin is not None:
            return admin

        admin = await self._admins.find_approved_by_email(email)
        if admin is not None and not admin.uid:
            try:
                admin = await self._admins.update(admin.id, {"uid": uid})
            except InfrastructureError:
                LOGGER.exception(
                    "Failed to back-fill uid on admin record",
                    extra={"admin_request_id": admin.id},
                )
        return admin

    async def _deny(
        self,
        session: AuthSession,
        email: str,
        log_reason: str,
        reason: str,
        message: str,
        client: ClientInfo | None,
    ) -> None:
        self._authenticator.sign_out(session.session_id)
        await self._rate_limiter.record_failed_attempt(rate_limit_key(email))
        await self._activity.log_failure(email, log_reason, client=client)
        await self._security_events.record(
            SecurityEventType.ACCESS_DENIED,
            SecurityEventSeverity.HIGH
            if reason in _HIGH_SEVERITY_DENIALS
            else SecurityEventSeverity.MEDIUM,
            email=email,
            admin_id=session.identity.uid,
            details={"reason": reason, "stage": "login"},
        )
        raise AuthorizationError(message, reason=reason)
