"""Authentication API router."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from school_admin.api.contracts import (
    ApiErrorResponse,
    AuthMeResponse,
    AuthSessionResponse,
    AuthUserResponse,
    CsrfTokenResponse,
    LogoutResponse,
    PasswordResetConfirmRequest,
    PasswordResetConfirmResponse,
    PasswordResetRequest,
    PasswordResetResponse,
    RateLimitInfoResponse,
    SessionActivityRequest,
    SessionActivityResponse,
    SessionExtendResponse,
)
from school_admin.auth.activity_log import LoginActivityLog
from school_admin.auth.guards import RequestGuards
from school_admin.auth.models import (
    ClientInfo,
    LoginActivity,
    LoginRequest,
    SecurityEvent,
    SecurityEventSummary,
)
from school_admin.auth.password_reset import PasswordResetService
from school_admin.auth.security_events import SecurityEventLog
from school_admin.auth.service import LoginOrchestrator
from school_admin.auth.session_timeout import SessionActivityState
from school_admin.auth.sessions import SessionSupervisor


def client_info(request: Request) -> ClientInfo:
    """Capture caller address and user agent for the login audit trail."""
    return ClientInfo(
        ip_address=(request.client.host if request.client else "") or "unknown",
        user_agent=request.headers.get("user-agent") or "unknown",
    )


def create_auth_router(
    orchestrator: LoginOrchestrator,
    supervisor: SessionSupervisor,
    guards: RequestGuards,
    activity_log: LoginActivityLog,
    security_events: SecurityEventLog,
    password_reset: PasswordResetService,
) -> APIRouter:
    """Build authentication router with login, reset, session and audit endpoints."""
    router = APIRouter(tags=["auth"])

    @router.post(
        "/api/auth/login",
        response_model=AuthSessionResponse,
        responses={
            401: {"model": ApiErrorResponse},
            403: {"model": ApiErrorResponse},
            429: {"model": ApiErrorResponse},
        },
    )
    async def login(req: LoginRequest, request: Request) -> AuthSessionResponse:
        """Authenticate an approved admin and open a supervised session."""
        result = await orchestrator.handle_login(
            req.email, req.password, client=client_info(request)
        )
        csrf_token = supervisor.csrf_guard_for(result.session.session_id).get_token()
        return AuthSessionResponse.from_domain(result.session, result.admin, csrf_token)

    @router.post("/api/auth/logout", response_model=LogoutResponse)
    async def logout(request: Request) -> LogoutResponse:
        """Close the caller's session."""
        session = guards.session(request)
        orchestrator.logout(session.session_id)
        return LogoutResponse(status="ok")

    @router.get(
        "/api/auth/me",
        response_model=AuthMeResponse,
        responses={401: {"model": ApiErrorResponse}, 403: {"model": ApiErrorResponse}},
    )
    async def me(request: Request) -> AuthMeResponse:
        """Return the signed-in admin."""
        session, admin = await guards.require_admin(request)
        return AuthMeResponse(
            user=AuthUserResponse(
                uid=session.identity.uid,
                email=session.identity.email,
                first_name=admin.first_name,
                last_name=admin.last_name,
                status=admin.status,
            ),
            session_id=session.session_id,
            expires_at=session.expires_at,
        )

    @router.get("/api/auth/csrf-token", response_model=CsrfTokenResponse)
    async def csrf_token(request: Request) -> CsrfTokenResponse:
        """Return the session's CSRF token, rotating it once expired."""
        session = guards.session(request)
        return CsrfTokenResponse(
            csrf_token=supervisor.csrf_guard_for(session.session_id).get_token()
        )

    @router.get("/api/auth/rate-limit", response_model=RateLimitInfoResponse)
    async def rate_limit_info(
        request: Request, email: str = Query(min_length=3)
    ) -> RateLimitInfoResponse:
        """Report failed login attempts recorded for an email."""
        await guards.require_admin(request)
        info = await orchestrator.get_rate_limit_info(email)
        return RateLimitInfoResponse(count=info.count, time_until_reset=info.time_until_reset)

    @router.get("/api/auth/login-activities", response_model=list[LoginActivity])
    async def login_activities(
        request: Request, limit: int = Query(default=50, ge=1, le=100)
    ) -> list[LoginActivity]:
        """List recent login attempts, newest first."""
        await guards.require_admin(request)
        return await activity_log.recent(limit)

    @router.get("/api/auth/session", response_model=SessionActivityState)
    async def session_state(request: Request) -> SessionActivityState:
        """Return the inactivity timer state of the caller's session."""
        session = guards.session(request)
        return supervisor.manager_for(session.session_id).snapshot()

    @router.post("/api/auth/session/activity", response_model=SessionActivityResponse)
    async def session_activity(
        req: SessionActivityRequest, request: Request
    ) -> SessionActivityResponse:
        """Feed client UI events into the inactivity timer."""
        session = guards.session(request)
        accepted = supervisor.publish_activity(session.session_id, req.events)
        snapshot = supervisor.manager_for(session.session_id).snapshot()
        return SessionActivityResponse(
            accepted=accepted,
            state=snapshot.state,
            seconds_until_timeout=snapshot.seconds_until_timeout,
        )

    @router.post("/api/auth/session/extend", response_model=SessionExtendResponse)
    async def session_extend(request: Request) -> SessionExtendResponse:
        """Restart the inactivity timer after the warning was acknowledged."""
        session = guards.session(request)
        await guards.require_csrf(request, session)
        manager = supervisor.manager_for(session.session_id)
        extended = manager.extend_session()
        snapshot = manager.snapshot()
        return SessionExtendResponse(
            extended=extended,
            state=snapshot.state,
            seconds_until_timeout=snapshot.seconds_until_timeout,
        )

    @router.post("/api/auth/password-reset", response_model=PasswordResetResponse)
    async def request_password_reset(
        req: PasswordResetRequest, request: Request
    ) -> PasswordResetResponse:
        """Queue a reset link; the answer is the same for every email."""
        message = await password_reset.request_password_reset(
            req.email,
            origin=request.headers.get("origin"),
            referrer=request.headers.get("referer"),
        )
        return PasswordResetResponse(message=message)

    @router.post(
        "/api/auth/password-reset/confirm",
        response_model=PasswordResetConfirmResponse,
        responses={401: {"model": ApiErrorResponse}, 422: {"model": ApiErrorResponse}},
    )
    async def confirm_password_reset(
        req: PasswordResetConfirmRequest,
    ) -> PasswordResetConfirmResponse:
        identity = await password_reset.confirm_password_reset(
            req.token, req.password, req.confirm_password
        )
        return PasswordResetConfirmResponse(status="ok", email=identity.email)

    @router.get("/api/auth/security-events", response_model=list[SecurityEvent])
    async def list_security_events(
        request: Request,
        limit: int = Query(default=50, ge=1, le=100),
        unresolved_only: bool = Query(default=False),
    ) -> list[SecurityEvent]:
        """List recent security events, newest first."""
        await guards.require_admin(request)
        return await security_events.recent(limit, unresolved_only=unresolved_only)

    @router.get("/api/auth/security-events/summary", response_model=SecurityEventSummary)
    async def security_event_summary(
        request: Request, hours: int = Query(default=24, ge=1, le=24 * 30)
    ) -> SecurityEventSummary:
        await guards.require_admin(request)
        return await security_events.summarize(hours)

    @router.post(
        "/api/auth/security-events/{event_id}/resolve",
        response_model=SecurityEvent,
        responses={403: {"model": ApiErrorResponse}, 404: {"model": ApiErrorResponse}},
    )
    async def resolve_security_event(event_id: str, request: Request) -> SecurityEvent:
        """Mark an event triaged by the acting admin."""
        session, admin = await guards.require_admin(request)
        await guards.require_csrf(request, session)
        return await security_events.resolve(event_id, admin.email)

    return router
