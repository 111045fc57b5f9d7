"""Inactivity timeout for signed-in sessions.

A manager moves through ``inactive -> active -> warning -> expired``. Any
monitored activity (or an explicit extension) while active or warning
re-arms a single warning/timeout timer pair.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import Callable, Protocol

from pydantic import BaseModel

from school_admin.core.config import SessionConfig

LOGGER = logging.getLogger(__name__)


class ActivityEvent(StrEnum):
    """UI events that count as user activity."""

    POINTER_MOVE = "pointermove"
    POINTER_DOWN = "pointerdown"
    KEY_PRESS = "keypress"
    SCROLL = "scroll"
    TOUCH_START = "touchstart"
    CLICK = "click"


class SessionState(StrEnum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


class SessionActivityState(BaseModel):
    """Read-only view of a manager for API responses."""

    state: SessionState
    last_activity: float
    warning_fired: bool
    seconds_until_timeout: float | None = None


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Schedule callbacks on the running event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


ActivityListener = Callable[[ActivityEvent], None]


class ActivityFeed:
    """Per-session activity event bus."""

    def __init__(self) -> None:
        self._listeners: list[ActivityListener] = []

    def add_listener(self, listener: ActivityListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ActivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, event_name: str) -> bool:
        """Deliver a monitored event; return ``False`` for unknown event names.

        Listener failures are logged and never reach the publisher.
        """
        try:
            event = ActivityEvent(event_name)
        except ValueError:
            return False
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Activity listener failed for event=%s", event)
        return True


class SessionTimeoutManager:
    """Two-stage inactivity timer for one session."""

    def __init__(
        self,
        config: SessionConfig,
        *,
        scheduler: Scheduler,
        activity_feed: ActivityFeed,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if config.warning_minutes >= config.timeout_minutes:
            raise ValueError("warning_minutes must be lower than timeout_minutes")
        self._config = config
        self._scheduler = scheduler
        self._feed = activity_feed
        self._clock = clock
        self._state = SessionState.INACTIVE
        self._last_activity = clock()
        self._warning_fired = False
        self._warning_handle: TimerHandle | None = None
        self._timeout_handle: TimerHandle | None = None
        self._on_warning: Callable[[], None] | None = None
        self._on_timeout: Callable[[], None] | None = None
        self._feed.add_listener(self._handle_activity)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_activity(self) -> float:
        return self._last_activity

    def set_callbacks(
        self, on_warning: Callable[[], None], on_timeout: Callable[[], None]
    ) -> None:
        self._on_warning = on_warning
        self._on_timeout = on_timeout

    def start(self) -> None:
        """Arm the timers for a freshly authenticated session."""
        self._state = SessionState.ACTIVE
        self._reset_timers()

    def record_activity(self, event: ActivityEvent) -> None:
        self._handle_activity(event)

    def extend_session(self) -> bool:
        """Explicit "stay signed in"; return whether the session was still alive."""
        if self._state not in (SessionState.ACTIVE, SessionState.WARNING):
            return False
        self._state = SessionState.ACTIVE
        self._reset_timers()
        return True

    def stop(self) -> None:
        """Cancel timers after sign-out."""
        self._clear_timers()
        if self._state is not SessionState.EXPIRED:
            self._state = SessionState.INACTIVE

    def destroy(self) -> None:
        """Cancel timers and detach from the activity feed."""
        self.stop()
        self._feed.remove_listener(self._handle_activity)

    def snapshot(self) -> SessionActivityState:
        remaining = None
        if self._state in (SessionState.ACTIVE, SessionState.WARNING):
            deadline = self._last_activity + self._config.timeout_minutes * 60
            remaining = max(0.0, deadline - self._clock())
        return SessionActivityState(
            state=self._state,
            last_activity=self._last_activity,
            warning_fired=self._warning_fired,
            seconds_until_timeout=remaining,
        )

    def _handle_activity(self, event: ActivityEvent) -> None:
        if self._state not in (SessionState.ACTIVE, SessionState.WARNING):
            return
        self._state = SessionState.ACTIVE
        self._reset_timers()

    def _reset_timers(self) -> None:
        self._last_activity = self._clock()
        self._warning_fired = False
        self._clear_timers()
        warning_delay = (self._config.timeout_minutes - self._config.warning_minutes) * 60
        self._warning_handle = self._scheduler.call_later(warning_delay, self._fire_warning)
        self._timeout_handle = self._scheduler.call_later(
            self._config.timeout_minutes * 60, self._fire_timeout
        )

    def _clear_timers(self) -> None:
        if self._warning_handle is not None:
            self._warning_handle.cancel()
            self._warning_handle = None
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _fire_warning(self) -> None:
        self._warning_handle = None
        if self._state is not SessionState.ACTIVE:
            return
        self._state = SessionState.WARNING
        self._warning_fired = True
        if self._on_warning is not None:
            try:
                self._on_warning()
            except Exception:
                LOGGER.exception("Session warning callback failed")

    def _fire_timeout(self) -> None:
        self._timeout_handle = None
        if self._state not in (SessionState.ACTIVE, SessionState.WARNING):
            return
        self._clear_timers()
        self._state = SessionState.EXPIRED
        LOGGER.info("Session timeout - signing out user")
        if self._on_timeout is not None:
            try:
                self._on_timeout()
            except Exception:
                LOGGER.exception("Session timeout callback failed")
