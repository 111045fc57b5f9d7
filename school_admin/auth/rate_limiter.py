"""Failed-attempt throttling persisted in the document store.

Entries live in the ``rate_limits`` collection keyed by a hashed identifier
(``email:<address>``, ``reset:<address>`` ...). Each identifier owns two
documents: the standard-window entry, dropped once its window lapses, and an
escalation tally that outlives those resets so sustained abuse is still seen.

The check-then-record sequence is not atomic: two concurrent failures for one
identifier can both read the same count and under-count by one. The limiter
is a deterrent, so that window is accepted rather than guarded.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from pydantic import BaseModel, ValidationError

from school_admin.core.config import RateLimitConfig
from school_admin.core.errors import InfrastructureError
from school_admin.core.security import hash_identifier
from school_admin.storage.document_store import DocumentStore

LOGGER = logging.getLogger(__name__)

RATE_LIMIT_COLLECTION = "rate_limits"
ESCALATION_SUFFIX = "_escalation"
REASON_EXTENDED_LOCKOUT = "Extended lockout due to excessive attempts"
REASON_TOO_MANY_ATTEMPTS = "Too many failed attempts"

_Model = TypeVar("_Model", bound=BaseModel)


class RateLimitEntry(BaseModel):
    """Persisted failure history for one identifier's standard window."""

    count: int
    first_attempt: float
    last_attempt: float
    escalation_count: int = 0


class EscalationTally(BaseModel):
    """Failures counted across standard windows within one escalation window."""

    escalation_count: int
    escalation_started_at: float


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of a rate-limit check; ``time_remaining`` is in seconds."""

    is_limited: bool
    time_remaining: float | None = None
    reason: str | None = None


@dataclass(frozen=True)
class AttemptInfo:
    """Diagnostic view of an identifier's current window."""

    count: int
    time_until_reset: float | None = None


class PersistentRateLimiter:
    """Sliding-window limiter with an escalating extended lockout."""

    def __init__(
        self,
        store: DocumentStore,
        config: RateLimitConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    async def is_rate_limited(self, identifier: str) -> RateLimitStatus:
        """Report whether further attempts for ``identifier`` must be refused.

        Storage failures fail open so that an outage never locks out
        legitimate users.
        """
        key = hash_identifier(identifier)
        try:
            now = self._clock()
            tally = await self._load(key + ESCALATION_SUFFIX, EscalationTally)
            if tally is not None and self._escalation_active(tally, now):
                elapsed = now - tally.escalation_started_at
                return RateLimitStatus(
                    is_limited=True,
                    time_remaining=max(0.0, self._config.escalation_window_seconds - elapsed),
                    reason=REASON_EXTENDED_LOCKOUT,
                )

            entry = await self._load(key, RateLimitEntry)
            if entry is None:
                return RateLimitStatus(is_limited=False)

            if now - entry.first_attempt > self._config.window_seconds:
                await self._store.delete(RATE_LIMIT_COLLECTION, key)
                return RateLimitStatus(is_limited=False)

            if entry.count >= self._config.max_attempts:
                remaining = self._config.window_seconds - (now - entry.last_attempt)
                return RateLimitStatus(
                    is_limited=True,
                    time_remaining=max(0.0, remaining),
                    reason=REASON_TOO_MANY_ATTEMPTS,
                )
            return RateLimitStatus(is_limited=False)
        except InfrastructureError:
            LOGGER.exception("Rate limit check failed; allowing attempt")
            return RateLimitStatus(is_limited=False)

    async def record_failed_attempt(self, identifier: str) -> None:
        """Count one more failure, starting a fresh window when the old one lapsed."""
        key = hash_identifier(identifier)
        try:
            now = self._clock()
            tally = self._next_tally(
                await self._load(key + ESCALATION_SUFFIX, EscalationTally), now
            )
            entry = await self._load(key, RateLimitEntry)
            if entry is None or now - entry.first_attempt > self._config.window_seconds:
                entry = RateLimitEntry(count=1, first_attempt=now, last_attempt=now)
            else:
                entry = entry.model_copy(
                    update={"count": entry.count + 1, "last_attempt": now}
                )
            entry = entry.model_copy(update={"escalation_count": tally.escalation_count})

            await self._store.set(
                RATE_LIMIT_COLLECTION, key + ESCALATION_SUFFIX, tally.model_dump()
            )
            await self._store.set(RATE_LIMIT_COLLECTION, key, entry.model_dump())
        except InfrastructureError:
            LOGGER.exception("Failed recording failed attempt")

    async def clear_attempts(self, identifier: str) -> None:
        """Drop the history for ``identifier`` after a successful authentication."""
        key = hash_identifier(identifier)
        try:
            await self._store.delete(RATE_LIMIT_COLLECTION, key)
            await self._store.delete(RATE_LIMIT_COLLECTION, key + ESCALATION_SUFFIX)
        except InfrastructureError:
            LOGGER.exception("Failed clearing rate limit attempts")

    async def get_attempt_info(self, identifier: str) -> AttemptInfo:
        """Return failure count and seconds until the current window resets."""
        try:
            entry = await self._load(hash_identifier(identifier), RateLimitEntry)
        except InfrastructureError:
            LOGGER.exception("Failed reading rate limit attempt info")
            return AttemptInfo(count=0)
        if entry is None:
            return AttemptInfo(count=0)
        until_reset = self._config.window_seconds - (self._clock() - entry.first_attempt)
        return AttemptInfo(count=entry.count, time_until_reset=max(0.0, until_reset))

    async def _load(self, key: str, model: type[_Model]) -> _Model | None:
        doc = await self._store.get(RATE_LIMIT_COLLECTION, key)
        if doc is None:
            return None
        try:
            return model.model_validate(doc)
        except ValidationError:
            LOGGER.warning("Discarding malformed rate limit document: %s", key)
            return None

    def _escalation_active(self, tally: EscalationTally, now: float) -> bool:
        if tally.escalation_count < self._config.escalation_threshold:
            return False
        return now - tally.escalation_started_at < self._config.escalation_window_seconds

    def _next_tally(self, tally: EscalationTally | None, now: float) -> EscalationTally:
        if tally is None or now - tally.escalation_started_at >= self._config.escalation_window_seconds:
            return EscalationTally(escalation_count=1, escalation_started_at=now)
        return tally.model_copy(update={"escalation_count": tally.escalation_count + 1})
