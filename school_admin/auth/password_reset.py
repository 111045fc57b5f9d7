"""Self-service password reset.

Requesting a reset always answers with the same message whether or not the
email belongs to an account, was throttled, or came from a foreign origin, so
the endpoint cannot be used to enumerate registered addresses. Requests are
counted under the ``reset:<email>`` identifier of the shared rate limiter.

Reset links are not mailed from here: :class:`OutboxResetDelivery` queues them
in the ``password_reset_outbox`` collection for the mail relay.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Protocol
from urllib.parse import urlencode

from school_admin.auth.authenticator import (
    AuthProviderCode,
    AuthProviderError,
    Authenticator,
)
from school_admin.auth.csrf import CSRFGuard
from school_admin.auth.models import AuthIdentity, SecurityEventSeverity, SecurityEventType
from school_admin.auth.rate_limiter import PersistentRateLimiter
from school_admin.auth.security_events import SecurityEventLog
from school_admin.auth.service import rate_limit_key
from school_admin.core.errors import AuthenticationError, InfrastructureError, ValidationError
from school_admin.core.validators import normalize_email, validate_credential_strength
from school_admin.storage.document_store import DocumentStore

LOGGER = logging.getLogger(__name__)

PASSWORD_RESET_OUTBOX = "password_reset_outbox"
MSG_RESET_REQUESTED = (
    "If an admin account exists for this email, password reset instructions have been sent."
)
MSG_RESET_INVALID = "This password reset link is invalid or has expired."


def reset_rate_limit_key(email: str) -> str:
    return f"reset:{email}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResetDelivery(Protocol):
    async def deliver(self, email: str, reset_url: str) -> None: ...


class OutboxResetDelivery:
    """Queue reset links in the document store for the mail relay to send."""

    def __init__(
        self, store: DocumentStore, *, now: Callable[[], datetime] = _utc_now
    ) -> None:
        self._store = store
        self._now = now

    async def deliver(self, email: str, reset_url: str) -> None:
        await self._store.set(
            PASSWORD_RESET_OUTBOX,
            uuid.uuid4().hex,
            {
                "email": email,
                "reset_url": reset_url,
                "created_at": self._now().isoformat(),
                "sent": False,
            },
        )


class PasswordResetService:
    def __init__(
        self,
        *,
        authenticator: Authenticator,
        rate_limiter: PersistentRateLimiter,
        security_events: SecurityEventLog,
        delivery: ResetDelivery,
        origin_guard: CSRFGuard,
        reset_url_base: str,
    ) -> None:
        self._authenticator = authenticator
        self._rate_limiter = rate_limiter
        self._security_events = security_events
        self._delivery = delivery
        self._origin_guard = origin_guard
        self._reset_url_base = reset_url_base

    async def request_password_reset(
        self, email: str, *, origin: str | None = None, referrer: str | None = None
    ) -> str:
        """Queue a reset link when allowed; always return the same message.

        Only a malformed email is reported, as a ``ValidationError``.
        """
        normalized_email = normalize_email(email)

        if not self._origin_guard.validate_origin(origin, referrer):
            await self._security_events.record(
                SecurityEventType.CSRF_REJECTED,
                SecurityEventSeverity.HIGH,
                email=normalized_email,
                details={"action": "password-reset", "origin": origin or referrer or ""},
            )
            return MSG_RESET_REQUESTED

        key = reset_rate_limit_key(normalized_email)
        limit = await self._rate_limiter.is_rate_limited(key)
        if limit.is_limited:
            await self._security_events.record(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                SecurityEventSeverity.LOW,
                email=normalized_email,
                details={"action": "password-reset", "reason": limit.reason},
            )
            return MSG_RESET_REQUESTED
        await self._rate_limiter.record_failed_attempt(key)

        try:
            token = await self._authenticator.create_password_reset_token(normalized_email)
        except AuthProviderError as exc:
            LOGGER.info(
                "Password reset not issued",
                extra={"email": normalized_email, "reason": str(exc.code)},
            )
            return MSG_RESET_REQUESTED

        reset_url = f"{self._reset_url_base}?{urlencode({'token': token})}"
        try:
            await self._delivery.deliver(normalized_email, reset_url)
        except InfrastructureError:
            LOGGER.exception("Failed to queue password reset", extra={"email": normalized_email})
            return MSG_RESET_REQUESTED
        LOGGER.info("Password reset queued", extra={"email": normalized_email})
        return MSG_RESET_REQUESTED

    async def confirm_password_reset(
        self, token: str, password: str, confirm_password: str
    ) -> AuthIdentity:
        """Set a new password from a reset link and lift login throttling."""
        if password != confirm_password:
            raise ValidationError("Passwords do not match.")
        validate_credential_strength(password)

        try:
            identity = await self._authenticator.reset_password(token, password)
        except AuthProviderError as exc:
            if exc.code is AuthProviderCode.NETWORK_REQUEST_FAILED:
                raise InfrastructureError("Password reset is temporarily unavailable.") from exc
            raise AuthenticationError(MSG_RESET_INVALID) from exc

        await self._rate_limiter.clear_attempts(rate_limit_key(identity.email))
        await self._rate_limiter.clear_attempts(reset_rate_limit_key(identity.email))
        return identity
