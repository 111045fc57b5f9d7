"""Security event trail for reviewer triage.

Events are written on forged-request rejections, authorization denials and
throttling. Critical events are additionally copied to ``security_alerts``
for investigation. Like the login activity log, a storage failure here is
logged and never interrupts the request that triggered the event.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping

from pydantic import ValidationError

from school_admin.auth.models import (
    SecurityEvent,
    SecurityEventSeverity,
    SecurityEventSummary,
    SecurityEventType,
)
from school_admin.core.errors import InfrastructureError, NotFoundError
from school_admin.core.logging import get_correlation_id
from school_admin.core.validators import sanitize_text
from school_admin.storage.document_store import DocumentStore

LOGGER = logging.getLogger(__name__)

SECURITY_EVENTS_COLLECTION = "security_events"
SECURITY_ALERTS_COLLECTION = "security_alerts"

_LOG_LEVELS = {
    SecurityEventSeverity.LOW: logging.INFO,
    SecurityEventSeverity.MEDIUM: logging.WARNING,
    SecurityEventSeverity.HIGH: logging.WARNING,
    SecurityEventSeverity.CRITICAL: logging.CRITICAL,
}


def _clean(value: str, limit: int) -> str:
    return sanitize_text(value, limit) if value else ""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SecurityEventLog:
    def __init__(
        self, store: DocumentStore, *, now: Callable[[], datetime] = _utc_now
    ) -> None:
        self._store = store
        self._now = now

    async def record(
        self,
        event_type: SecurityEventType,
        severity: SecurityEventSeverity,
        *,
        email: str = "",
        admin_id: str = "",
        details: Mapping[str, str | int | float | bool | None] | None = None,
    ) -> SecurityEvent:
        """Persist an unresolved event and return it."""
        event = SecurityEvent(
            id=uuid.uuid4().hex,
            type=event_type,
            severity=severity,
            occurred_at=self._now().isoformat(),
            email=_clean(email, 254),
            admin_id=_clean(admin_id, 100),
            details={
                _clean(key, 50): _clean(value, 500) if isinstance(value, str) else value
                for key, value in (details or {}).items()
            },
            correlation_id=get_correlation_id(),
        )
        LOGGER.log(
            _LOG_LEVELS[severity],
            "Security event recorded",
            extra={
                "event_type": event.type.value,
                "severity": event.severity.value,
                "email": event.email,
            },
        )

        document = event.model_dump(mode="json")
        try:
            await self._store.set(SECURITY_EVENTS_COLLECTION, event.id, document)
            if severity is SecurityEventSeverity.CRITICAL:
                await self._store.set(
                    SECURITY_ALERTS_COLLECTION,
                    event.id,
                    {**document, "needs_investigation": True},
                )
        except InfrastructureError:
            LOGGER.exception("Error recording security event")
        return event

    async def recent(
        self, limit: int = 50, *, unresolved_only: bool = False
    ) -> list[SecurityEvent]:
        """Return newest events first; malformed rows are skipped."""
        bounded = min(max(1, int(limit or 50)), 100)
        events = [
            event
            for event in await self._load_all()
            if not (unresolved_only and event.resolved)
        ]
        events.sort(key=lambda item: item.occurred_at, reverse=True)
        return events[:bounded]

    async def resolve(self, event_id: str, actor: str) -> SecurityEvent:
        """Mark an event resolved; resolving twice keeps the first resolution."""
        row = await self._store.get(SECURITY_EVENTS_COLLECTION, event_id)
        if row is None:
            raise NotFoundError("Security event not found.")
        try:
            event = SecurityEvent.model_validate(row)
        except ValidationError as exc:
            raise NotFoundError("Security event not found.") from exc
        if event.resolved:
            return event
        updated = await self._store.update(
            SECURITY_EVENTS_COLLECTION,
            event_id,
            {
                "resolved": True,
                "resolved_at": self._now().isoformat(),
                "resolved_by": sanitize_text(actor, 254),
            },
        )
        LOGGER.info("Security event resolved", extra={"event_type": event.type.value})
        return SecurityEvent.model_validate(updated)

    async def summarize(self, window_hours: int = 24) -> SecurityEventSummary:
        since = (self._now() - timedelta(hours=window_hours)).isoformat()
        events = [event for event in await self._load_all() if event.occurred_at >= since]
        by_type: dict[str, int] = {}
        for event in events:
            by_type[event.type.value] = by_type.get(event.type.value, 0) + 1
        return SecurityEventSummary(
            window_hours=window_hours,
            total=len(events),
            critical=sum(1 for e in events if e.severity is SecurityEventSeverity.CRITICAL),
            high=sum(1 for e in events if e.severity is SecurityEventSeverity.HIGH),
            unresolved=sum(1 for e in events if not e.resolved),
            by_type=by_type,
        )

    async def _load_all(self) -> list[SecurityEvent]:
        events: list[SecurityEvent] = []
        for row in await self._store.list_documents(SECURITY_EVENTS_COLLECTION):
            try:
                events.append(SecurityEvent.model_validate(row))
            except ValidationError:
                LOGGER.warning("Skipping malformed security event row")
        return events
