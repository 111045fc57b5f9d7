"""Per-request checks shared by protected routers."""

from __future__ import annotations

import logging

from fastapi import Request

from school_admin.admins.models import AdminRequest, AdminStatus
from school_admin.admins.repository import AdminRequestRepository, MalformedAdminRecord
from school_admin.auth.authenticator import Authenticator
from school_admin.auth.models import AuthSession, SecurityEventSeverity, SecurityEventType
from school_admin.auth.security_events import SecurityEventLog
from school_admin.auth.sessions import SessionSupervisor
from school_admin.core.config import CsrfConfig
from school_admin.core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    SecurityAnomalyError,
)

LOGGER = logging.getLogger(__name__)

CSRF_HEADER = "x-csrf-token"


class RequestGuards:
    """Resolve the caller's session and admin record, and enforce CSRF."""

    def __init__(
        self,
        authenticator: Authenticator,
        supervisor: SessionSupervisor,
        admins: AdminRequestRepository,
        csrf: CsrfConfig,
        security_events: SecurityEventLog,
    ) -> None:
        self._authenticator = authenticator
        self._supervisor = supervisor
        self._admins = admins
        self._csrf = csrf
        self._security_events = security_events

    def session(self, request: Request) -> AuthSession:
        session = getattr(request.state, "session", None)
        if session is None:
            raise AuthenticationError("Authentication required")
        return session

    async def require_admin(self, request: Request) -> tuple[AuthSession, AdminRequest]:
        """Return the session and its admin record if access is still approved.

        Access revoked mid-session ends the session.
        """
        session = self.session(request)
        try:
            admin = await self._admins.find_by_uid(session.identity.uid)
        except MalformedAdminRecord as exc:
            self._authenticator.sign_out(session.session_id)
            await self._record_denial(
                request, session, "invalid-record", SecurityEventSeverity.HIGH
            )
            raise AuthorizationError(
                "Invalid admin record. Please contact support.", reason="invalid-record"
            ) from exc

        if admin is None or admin.status is not AdminStatus.APPROVED:
            reason = "not-registered" if admin is None else admin.status.value
            LOGGER.warning(
                "Admin access denied for live session",
                extra={"session_id": session.session_id, "reason": reason},
            )
            self._authenticator.sign_out(session.session_id)
            severity = (
                SecurityEventSeverity.HIGH
                if admin is not None and admin.status is AdminStatus.REVOKED
                else SecurityEventSeverity.MEDIUM
            )
            await self._record_denial(request, session, reason, severity)
            raise AuthorizationError("Admin access is no longer granted.", reason=reason)
        return session, admin

    async def require_csrf(self, request: Request, session: AuthSession) -> None:
        """Check the ``X-CSRF-Token`` header and request origin for a mutation."""
        if not self._csrf.enabled:
            return
        try:
            guard = self._supervisor.csrf_guard_for(session.session_id)
        except NotFoundError as exc:
            await self._record_csrf_rejection(request, session, "no-session-guard")
            raise SecurityAnomalyError() from exc

        valid = guard.validate_request(
            request.headers.get(CSRF_HEADER),
            guard.current_token(),
            origin=request.headers.get("origin"),
            referrer=request.headers.get("referer"),
        )
        if not valid:
            LOGGER.warning(
                "Rejected request failing CSRF checks",
                extra={
                    "session_id": session.session_id,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            await self._record_csrf_rejection(request, session, "token-or-origin")
            raise SecurityAnomalyError()

    async def _record_csrf_rejection(
        self, request: Request, session: AuthSession, reason: str
    ) -> None:
        await self._security_events.record(
            SecurityEventType.CSRF_REJECTED,
            SecurityEventSeverity.HIGH,
            email=session.identity.email,
            admin_id=session.identity.uid,
            details={
                "reason": reason,
                "path": request.url.path,
                "method": request.method,
                "origin": request.headers.get("origin") or request.headers.get("referer") or "",
            },
        )

    async def _record_denial(
        self,
        request: Request,
        session: AuthSession,
        reason: str,
        severity: SecurityEventSeverity,
    ) -> None:
        await self._security_events.record(
            SecurityEventType.ACCESS_DENIED,
            severity,
            email=session.identity.email,
            admin_id=session.identity.uid,
            details={"reason": reason, "stage": "request", "path": request.url.path},
        )
