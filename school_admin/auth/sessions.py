"""Per-session timeout managers and CSRF storage, driven by auth state changes."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from school_admin.auth.authenticator import Authenticator
from school_admin.auth.csrf import CSRFGuard
from school_admin.auth.models import AuthStateChange
from school_admin.auth.session_timeout import (
    ActivityFeed,
    AsyncioScheduler,
    Scheduler,
    SessionTimeoutManager,
)
from school_admin.core.config import CsrfConfig, SessionConfig
from school_admin.core.errors import NotFoundError

LOGGER = logging.getLogger(__name__)


@dataclass
class _SupervisedSession:
    manager: SessionTimeoutManager
    feed: ActivityFeed
    csrf: CSRFGuard
    storage: dict[str, str] = field(default_factory=dict)


class SessionSupervisor:
    """Attach one timeout manager and one CSRF guard to every live session."""

    def __init__(
        self,
        authenticator: Authenticator,
        *,
        session_config: SessionConfig,
        csrf_config: CsrfConfig,
        public_origin: str,
        allowed_origins: Iterable[str] = (),
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._authenticator = authenticator
        self._session_config = session_config
        self._csrf_config = csrf_config
        self._public_origin = public_origin
        self._allowed_origins = list(allowed_origins)
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock
        self._sessions: dict[str, _SupervisedSession] = {}
        self._unsubscribe = authenticator.on_auth_state_changed(self._handle_auth_change)

    def _handle_auth_change(self, change: AuthStateChange) -> None:
        session_id = change.session.session_id
        if change.signed_in:
            self._open(session_id)
        else:
            self._teardown(session_id)

    def _open(self, session_id: str) -> None:
        feed = ActivityFeed()
        storage: dict[str, str] = {}
        manager = SessionTimeoutManager(
            self._session_config,
            scheduler=self._scheduler,
            activity_feed=feed,
            clock=self._clock,
        )
        manager.set_callbacks(
            on_warning=lambda: LOGGER.info(
                "Session inactivity warning", extra={"session_id": session_id}
            ),
            on_timeout=lambda: self._authenticator.sign_out(session_id),
        )
        guard = CSRFGuard(
            storage,
            current_origin=self._public_origin,
            allowed_origins=self._allowed_origins,
            max_age_seconds=self._csrf_config.max_age_seconds,
            clock=self._clock,
        )
        self._sessions[session_id] = _SupervisedSession(
            manager=manager, feed=feed, csrf=guard, storage=storage
        )
        manager.start()

    def _teardown(self, session_id: str) -> None:
        supervised = self._sessions.pop(session_id, None)
        if supervised is None:
            return
        supervised.manager.destroy()
        supervised.storage.clear()

    def _get(self, session_id: str) -> _SupervisedSession:
        supervised = self._sessions.get(session_id)
        if supervised is None:
            raise NotFoundError("Session is not active")
        return supervised

    def manager_for(self, session_id: str) -> SessionTimeoutManager:
        return self._get(session_id).manager

    def csrf_guard_for(self, session_id: str) -> CSRFGuard:
        return self._get(session_id).csrf

    def publish_activity(self, session_id: str, events: Iterable[str]) -> int:
        """Feed client-reported UI events; return how many were recognized."""
        feed = self._get(session_id).feed
        return sum(1 for event in events if feed.publish(event))

    def is_tracking(self, session_id: str) -> bool:
        return session_id in self._sessions

    def close(self) -> None:
        self._unsubscribe()
        for session_id in list(self._sessions):
            self._teardown(session_id)
