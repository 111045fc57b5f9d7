"""Per-session anti-forgery tokens and request origin checks."""

from __future__ import annotations

import logging
import re
import secrets
import time
from typing import Callable, Iterable, MutableMapping
from urllib.parse import urlsplit

from school_admin.core.security import constant_time_equals

LOGGER = logging.getLogger(__name__)

TOKEN_KEY = "__csrf_token__"
TOKEN_TIMESTAMP_KEY = f"{TOKEN_KEY}_timestamp"
TOKEN_BYTES = 32
DEFAULT_EXTRA_ORIGINS = ("https://localhost:3000", "https://127.0.0.1:3000")

_TOKEN_RE = re.compile(r"^[a-f0-9]{64}$")
_HEX_RE = re.compile(r"^[a-fA-F0-9]+$")


def _origin_of(value: str) -> str | None:
    """Return ``scheme://host[:port]`` for a URL, or ``None`` when unparsable."""
    try:
        parts = urlsplit(value.strip()[:500])
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    origin = f"{parts.scheme.lower()}://{parts.hostname.lower()}"
    return f"{origin}:{port}" if port else origin


class CSRFGuard:
    """Issue and validate the anti-forgery token held in session storage."""

    def __init__(
        self,
        storage: MutableMapping[str, str],
        *,
        current_origin: str,
        allowed_origins: Iterable[str] = (),
        max_age_seconds: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._current_origin = current_origin
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._allowed_origins: list[str] = []
        for origin in [*allowed_origins, *DEFAULT_EXTRA_ORIGINS, current_origin]:
            normalized = _origin_of(origin)
            if normalized and normalized not in self._allowed_origins:
                self._allowed_origins.append(normalized)

    @property
    def allowed_origins(self) -> list[str]:
        return list(self._allowed_origins)

    def get_token(self) -> str:
        """Return the stored token, regenerating it when absent, malformed or expired."""
        token = self._storage.get(TOKEN_KEY)
        if not token or not self._is_valid_token(token):
            return self.refresh_token()
        return token

    def refresh_token(self) -> str:
        """Generate and store a fresh random token with its issue time."""
        token = secrets.token_hex(TOKEN_BYTES)
        self._storage[TOKEN_KEY] = token
        self._storage[TOKEN_TIMESTAMP_KEY] = str(self._clock())
        return token

    def current_token(self) -> str | None:
        """Return the stored token only if it is still valid; never regenerates."""
        token = self._storage.get(TOKEN_KEY)
        if token and self._is_valid_token(token):
            return token
        return None

    def validate_token(self, provided: str | None, expected: str | None) -> bool:
        """Compare tokens in constant time after cheap shape checks."""
        if not provided or not expected:
            return False
        if len(provided) != len(expected) or len(provided) < 16:
            return False
        if not _HEX_RE.match(provided) or not _HEX_RE.match(expected):
            return False
        return constant_time_equals(provided, expected)

    def validate_origin(self, origin: str | None = None, referrer: str | None = None) -> bool:
        """Check the request origin, falling back to referrer then our own origin."""
        request_origin = _origin_of(origin or referrer or self._current_origin)
        return request_origin is not None and request_origin in self._allowed_origins

    def validate_request(
        self,
        provided: str | None,
        expected: str | None,
        origin: str | None = None,
        referrer: str | None = None,
    ) -> bool:
        """Return whether both the token and the origin checks pass."""
        token_valid = (
            bool(expected)
            and self._is_valid_token(str(expected))
            and self.validate_token(provided, expected)
        )
        origin_valid = self.validate_origin(origin, referrer)

        if not token_valid:
            LOGGER.warning("CSRF token validation failed")
        if not origin_valid:
            LOGGER.warning("Origin validation failed: %s", origin or referrer or "")
        return token_valid and origin_valid

    def _is_valid_token(self, token: str) -> bool:
        if not _TOKEN_RE.match(token):
            return False
        raw_issued_at = self._storage.get(TOKEN_TIMESTAMP_KEY)
        if not raw_issued_at:
            return False
        try:
            issued_at = float(raw_issued_at)
        except ValueError:
            return False
        return self._clock() - issued_at < self._max_age_seconds
