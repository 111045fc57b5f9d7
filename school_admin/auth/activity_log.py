"""Login attempt audit trail stored in the document store."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from pydantic import ValidationError

from school_admin.auth.models import ClientInfo, LoginActivity, LoginActivityStatus
from school_admin.core.errors import InfrastructureError
from school_admin.core.validators import sanitize_text
from school_admin.storage.document_store import DocumentStore

LOGGER = logging.getLogger(__name__)

LOGIN_ACTIVITY_COLLECTION = "admin_login_activities"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LoginActivityLog:
    """Record login successes and failures without interrupting the login flow."""

    def __init__(
        self, store: DocumentStore, *, now: Callable[[], datetime] = _utc_now
    ) -> None:
        self._store = store
        self._now = now

    async def log_success(
        self, admin_id: str, email: str, *, client: ClientInfo | None = None
    ) -> None:
        LOGGER.info("Admin login successful", extra={"email": email})
        await self._write(
            LoginActivity(
                admin_id=sanitize_text(admin_id, 100),
                email=email,
                login_time=self._now().isoformat(),
                status=LoginActivityStatus.SUCCESS,
                **self._client_fields(client),
            )
        )

    async def log_failure(
        self, email: str, reason: str, *, client: ClientInfo | None = None
    ) -> None:
        failure_reason = sanitize_text(reason, 500)
        LOGGER.warning(
            "Admin login failed", extra={"email": email, "reason": failure_reason}
        )
        await self._write(
            LoginActivity(
                email=email,
                login_time=self._now().isoformat(),
                status=LoginActivityStatus.FAILED,
                failure_reason=failure_reason,
                **self._client_fields(client),
            )
        )

    async def recent(self, limit: int = 50) -> list[LoginActivity]:
        """Return newest activities first; malformed rows are skipped."""
        bounded = min(max(1, int(limit or 50)), 100)
        rows = await self._store.list_documents(LOGIN_ACTIVITY_COLLECTION)
        activities: list[LoginActivity] = []
        for row in rows:
            try:
                activities.append(LoginActivity.model_validate(row))
            except ValidationError:
                LOGGER.warning("Skipping malformed login activity row")
        activities.sort(key=lambda item: item.login_time, reverse=True)
        return activities[:bounded]

    @staticmethod
    def _client_fields(client: ClientInfo | None) -> dict[str, str]:
        if client is None:
            return {}
        return {
            "ip_address": sanitize_text(client.ip_address, 50),
            "user_agent": sanitize_text(client.user_agent, 500),
        }

    async def _write(self, activity: LoginActivity) -> None:
        try:
            await self._store.set(
                LOGIN_ACTIVITY_COLLECTION, uuid.uuid4().hex, activity.model_dump(mode="json")
            )
        except InfrastructureError:
            LOGGER.exception("Error logging admin login activity")
