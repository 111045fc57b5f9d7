"""Admin access request lifecycle: submit, review, register, revoke.

Approval only changes status. The requester later finishes registration with
their own credential, which creates the authenticable account and binds its
uid to the approved request. Reviewers never sign in as someone else.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

from school_admin.admins.models import (
    ALLOWED_TRANSITIONS,
    AUDIT_FIELDS,
    AdminRequest,
    AdminRequestStats,
    AdminStatus,
)
from school_admin.admins.repository import (
    AdminRequestRepository,
    MalformedAdminRecord,
    newest_first,
    parse_admin_request,
)
from school_admin.auth.authenticator import (
    AuthProviderCode,
    AuthProviderError,
    Authenticator,
)
from school_admin.core.config import RegistrationConfig
from school_admin.core.errors import (
    AuthenticationError,
    DuplicateRequestError,
    InfrastructureError,
    InvalidTransitionError,
    NotFoundError,
)
from school_admin.core.security import hash_password, verify_password
from school_admin.core.validators import (
    normalize_email,
    normalize_name,
    normalize_phone,
    validate_credential_strength,
)
from school_admin.storage.document_store import ChangeEvent

LOGGER = logging.getLogger(__name__)

SYSTEM_ACTOR = "System"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AdminRequestWorkflow:
    """State machine and housekeeping for admin access requests."""

    def __init__(
        self,
        repository: AdminRequestRepository,
        authenticator: Authenticator,
        *,
        registration: RegistrationConfig | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._repo = repository
        self._authenticator = authenticator
        self._registration = registration or RegistrationConfig()
        self._now = now

    async def submit_request(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone: str,
        credential: str,
    ) -> AdminRequest:
        """Create a ``pending`` request after normalization and duplicate checks."""
        normalized_email = normalize_email(email)
        normalized_phone = normalize_phone(
            phone, country_code=self._registration.phone_country_code
        )
        validate_credential_strength(credential)

        if await self._repo.exists(email=normalized_email):
            raise DuplicateRequestError("An admin request with this email already exists.")
        if await self._repo.exists(phone=normalized_phone):
            raise DuplicateRequestError(
                "An admin request with this phone number already exists."
            )

        request = AdminRequest(
            id=uuid.uuid4().hex,
            first_name=normalize_name(first_name, field="First name"),
            last_name=normalize_name(last_name, field="Last name"),
            email=normalized_email,
            phone=normalized_phone,
            status=AdminStatus.PENDING,
            requested_at=self._timestamp(),
            credential_hash=hash_password(credential),
        )
        await self._repo.save(request)
        LOGGER.info(
            "Admin access request submitted",
            extra={"admin_request_id": request.id, "email": request.email},
        )
        return request

    async def approve(self, request_id: str, acting_admin: str | None = None) -> AdminRequest:
        return await self._transition(request_id, AdminStatus.APPROVED, acting_admin)

    async def reject(self, request_id: str, acting_admin: str | None = None) -> AdminRequest:
        """Mark a request rejected; the record is kept for the audit trail."""
        return await self._transition(request_id, AdminStatus.REJECTED, acting_admin)

    async def revoke(self, request_id: str, acting_admin: str | None = None) -> AdminRequest:
        """Withdraw approval. The underlying account stays; login checks block it."""
        return await self._transition(request_id, AdminStatus.REVOKED, acting_admin)

    async def complete_registration(self, email: str, credential: str) -> AdminRequest:
        """Create the requester's account once their request is approved."""
        normalized_email = normalize_email(email)
        request = await self._repo.find_by_email(normalized_email)
        if request is None:
            raise NotFoundError("No admin request found for this email.")
        if request.status is not AdminStatus.APPROVED:
            raise InvalidTransitionError("Admin access has not been approved for this email.")
        if request.uid:
            raise DuplicateRequestError("Registration has already been completed for this email.")
        if request.credential_hash and not verify_password(credential, request.credential_hash):
            raise AuthenticationError("Password does not match the one submitted with the request.")
        validate_credential_strength(credential)

        try:
            identity = await self._authenticator.create_account(normalized_email, credential)
        except AuthProviderError as exc:
            if exc.code is AuthProviderCode.EMAIL_ALREADY_IN_USE:
                raise DuplicateRequestError(
                    "This email address is already in use by another account."
                ) from exc
            raise InfrastructureError("Could not create the admin account.") from exc

        completed = await self._repo.update(
            request.id,
            {"uid": identity.uid, "completed_at": self._timestamp(), "credential_hash": ""},
        )
        LOGGER.info(
            "Admin registration completed",
            extra={"admin_request_id": completed.id, "email": completed.email},
        )
        return completed

    async def delete_request(self, request_id: str) -> None:
        """Permanently remove a record; use reject to keep an audit trail."""
        if not await self._repo.delete(request_id):
            raise NotFoundError("Admin request not found.")
        LOGGER.info("Admin request deleted", extra={"admin_request_id": request_id})

    async def list_requests(self) -> list[AdminRequest]:
        return await self._repo.list_all()

    async def watch_requests(self) -> AsyncIterator[list[AdminRequest]]:
        """Yield a fresh snapshot on every change, de-duplicated by request id."""
        events: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        unsubscribe = self._repo.subscribe(events.put_nowait)
        try:
            current = {request.id: request for request in await self._repo.list_all()}
            yield newest_first(list(current.values()))
            while True:
                event = await events.get()
                if event.document is None:
                    current.pop(event.key, None)
                else:
                    try:
                        request = parse_admin_request(event.key, event.document)
                    except MalformedAdminRecord:
                        current.pop(event.key, None)
                    else:
                        current[request.id] = request
                yield newest_first(list(current.values()))
        finally:
            unsubscribe()

    async def cleanup_invalid_requests(self) -> int:
        """Delete records whose dates or shape cannot be parsed; return the count."""
        removed = 0
        for key, doc in await self._repo.list_raw():
            try:
                parse_admin_request(key, doc)
            except MalformedAdminRecord:
                if await self._repo.delete(key):
                    removed += 1
        if removed:
            LOGGER.info("Removed %d invalid admin records", removed)
        return removed

    async def get_stats(self) -> AdminRequestStats:
        requests = await self._repo.list_all()
        counts = {status: 0 for status in AdminStatus}
        for request in requests:
            counts[request.status] += 1
        return AdminRequestStats(
            total=len(requests),
            pending=counts[AdminStatus.PENDING],
            approved=counts[AdminStatus.APPROVED],
            rejected=counts[AdminStatus.REJECTED],
            revoked=counts[AdminStatus.REVOKED],
        )

    async def _transition(
        self, request_id: str, target: AdminStatus, acting_admin: str | None
    ) -> AdminRequest:
        request = await self._repo.get(request_id)
        if request is None:
            raise NotFoundError("Admin request not found.")
        if request.status is target:
            # Repeated delivery of the same action.
            return request
        if target not in ALLOWED_TRANSITIONS[request.status]:
            raise InvalidTransitionError(
                f"Cannot change admin request from {request.status.value} to {target.value}."
            )

        at_field, by_field = AUDIT_FIELDS[target]
        updated = await self._repo.update(
            request_id,
            {
                "status": target.value,
                at_field: self._timestamp(),
                by_field: acting_admin or SYSTEM_ACTOR,
            },
        )
        LOGGER.info(
            "Admin request %s",
            target.value,
            extra={"admin_request_id": request_id, "email": updated.email},
        )
        return updated

    def _timestamp(self) -> str:
        return self._now().isoformat()
