"""FastAPI router for admin access requests."""

from __future__ import annotations

from fastapi import APIRouter, Request

from school_admin.admins.models import (
    AdminRequestStats,
    AdminRequestSubmission,
    CompleteRegistrationRequest,
)
from school_admin.admins.workflow import AdminRequestWorkflow
from school_admin.api.contracts import (
    AdminRequestListResponse,
    AdminRequestResponse,
    ApiErrorResponse,
    CleanupResponse,
    DeleteAdminRequestResponse,
    SubmitAdminRequestResponse,
)
from school_admin.auth.guards import RequestGuards
from school_admin.core.errors import ValidationError


class AdminRequestsRouter:
    """Factory wrapper that builds the admin request router from the workflow."""

    def __init__(self, workflow: AdminRequestWorkflow, guards: RequestGuards) -> None:
        self._workflow = workflow
        self._guards = guards

    def build(self) -> APIRouter:
        """Create and return configured admin request router."""
        router = APIRouter(tags=["admin-requests"])

        @router.post(
            "/api/admin-requests",
            status_code=201,
            response_model=SubmitAdminRequestResponse,
            responses={409: {"model": ApiErrorResponse}, 422: {"model": ApiErrorResponse}},
        )
        async def submit_admin_request(
            req: AdminRequestSubmission,
        ) -> SubmitAdminRequestResponse:
            """Public form: ask for administrative access."""
            if req.password != req.confirm_password:
                raise ValidationError("Passwords do not match.")
            created = await self._workflow.submit_request(
                req.first_name, req.last_name, req.email, req.phone, req.password
            )
            return SubmitAdminRequestResponse(
                id=created.id,
                status=created.status,
                message="Your request has been submitted and is pending approval.",
            )

        @router.post(
            "/api/admin-requests/complete-registration",
            response_model=SubmitAdminRequestResponse,
            responses={
                401: {"model": ApiErrorResponse},
                404: {"model": ApiErrorResponse},
                409: {"model": ApiErrorResponse},
            },
        )
        async def complete_registration(
            req: CompleteRegistrationRequest,
        ) -> SubmitAdminRequestResponse:
            """Create the sign-in account for an approved request."""
            completed = await self._workflow.complete_registration(req.email, req.password)
            return SubmitAdminRequestResponse(
                id=completed.id,
                status=completed.status,
                message="Registration complete. You can now sign in.",
            )

        @router.get("/api/admin-requests", response_model=AdminRequestListResponse)
        async def list_admin_requests(request: Request) -> AdminRequestListResponse:
            """List every request, newest first."""
            await self._guards.require_admin(request)
            items = await self._workflow.list_requests()
            return AdminRequestListResponse(
                items=[AdminRequestResponse.from_domain(item) for item in items]
            )

        @router.get("/api/admin-requests/stats", response_model=AdminRequestStats)
        async def admin_request_stats(request: Request) -> AdminRequestStats:
            await self._guards.require_admin(request)
            return await self._workflow.get_stats()

        @router.post(
            "/api/admin-requests/cleanup",
            response_model=CleanupResponse,
            responses={403: {"model": ApiErrorResponse}},
        )
        async def cleanup_admin_requests(request: Request) -> CleanupResponse:
            """Delete records whose dates or shape are unreadable."""
            session, _ = await self._guards.require_admin(request)
            await self._guards.require_csrf(request, session)
            removed = await self._workflow.cleanup_invalid_requests()
            return CleanupResponse(removed=removed)

        @router.post(
            "/api/admin-requests/{request_id}/{action}",
            response_model=AdminRequestResponse,
            responses={
                403: {"model": ApiErrorResponse},
                404: {"model": ApiErrorResponse},
                409: {"model": ApiErrorResponse},
            },
        )
        async def review_admin_request(
            request_id: str, action: str, request: Request
        ) -> AdminRequestResponse:
            """Approve, reject or revoke a request."""
            session, admin = await self._guards.require_admin(request)
            await self._guards.require_csrf(request, session)
            transitions = {
                "approve": self._workflow.approve,
                "reject": self._workflow.reject,
                "revoke": self._workflow.revoke,
            }
            if action not in transitions:
                raise ValidationError(f"Unknown admin request action: {action}")
            updated = await transitions[action](request_id, admin.email)
            return AdminRequestResponse.from_domain(updated)

        @router.delete(
            "/api/admin-requests/{request_id}",
            response_model=DeleteAdminRequestResponse,
            responses={404: {"model": ApiErrorResponse}},
        )
        async def delete_admin_request(
            request_id: str, request: Request
        ) -> DeleteAdminRequestResponse:
            """Permanently remove a request."""
            session, _ = await self._guards.require_admin(request)
            await self._guards.require_csrf(request, session)
            await self._workflow.delete_request(request_id)
            return DeleteAdminRequestResponse(id=request_id, deleted=True)

        return router
