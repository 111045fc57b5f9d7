"""Account and session provider backed by the document store."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable

from pydantic import ValidationError

from school_admin.auth.models import (
    AuthAccount,
    AuthIdentity,
    AuthSession,
    AuthStateChange,
)
from school_admin.core.config import AuthConfig
from school_admin.core.errors import InfrastructureError
from school_admin.core.security import (
    build_signed_token,
    constant_time_equals,
    decode_signed_token,
    fingerprint,
    hash_password,
    verify_password,
)
from school_admin.storage.document_store import DocumentStore

LOGGER = logging.getLogger(__name__)

ACCOUNTS_COLLECTION = "accounts"
SESSION_TOKEN_TYPE = "session"
RESET_TOKEN_TYPE = "password_reset"

AuthStateListener = Callable[[AuthStateChange], None]


class AuthProviderCode(StrEnum):
    """Provider error codes surfaced by :class:`Authenticator`."""

    INVALID_CREDENTIAL = "auth/invalid-credential"
    USER_NOT_FOUND = "auth/user-not-found"
    WRONG_PASSWORD = "auth/wrong-password"
    TOO_MANY_REQUESTS = "auth/too-many-requests"
    USER_DISABLED = "auth/user-disabled"
    NETWORK_REQUEST_FAILED = "auth/network-request-failed"
    EMAIL_ALREADY_IN_USE = "auth/email-already-in-use"
    SESSION_EXPIRED = "auth/session-expired"


class AuthProviderError(Exception):
    """Raw provider failure; callers classify it into user-safe errors."""

    def __init__(self, code: AuthProviderCode, message: str = "") -> None:
        super().__init__(message or str(code))
        self.code = code


class Authenticator:
    """Create accounts, sign in/out and notify observers of session changes."""

    def __init__(
        self,
        store: DocumentStore,
        config: AuthConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock
        self._sessions: dict[str, AuthSession] = {}
        self._listeners: list[AuthStateListener] = []

    async def create_account(self, email: str, password: str) -> AuthIdentity:
        """Register a new authenticable account for ``email``."""
        key = email.strip().lower()
        try:
            existing = await self._store.query(ACCOUNTS_COLLECTION, email=key)
            if existing:
                raise AuthProviderError(AuthProviderCode.EMAIL_ALREADY_IN_USE)
            account = AuthAccount(
                uid=uuid.uuid4().hex,
                email=key,
                password_hash=hash_password(password),
                created_at=datetime.now(timezone.utc).isoformat(),
            )
            await self._store.set(ACCOUNTS_COLLECTION, account.uid, account.model_dump())
        except InfrastructureError as exc:
            raise AuthProviderError(AuthProviderCode.NETWORK_REQUEST_FAILED, exc.message) from exc
        LOGGER.info("Account created", extra={"email": key})
        return AuthIdentity(uid=account.uid, email=account.email)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Verify credentials and open a new session."""
        account = await self._find_account(email.strip().lower())
        if not verify_password(password, account.password_hash):
            raise AuthProviderError(AuthProviderCode.WRONG_PASSWORD)
        if account.disabled:
            raise AuthProviderError(AuthProviderCode.USER_DISABLED)

        session = self._issue_session(AuthIdentity(uid=account.uid, email=account.email))
        self._sessions[session.session_id] = session
        self._emit(AuthStateChange(session=session, signed_in=True))
        return session

    async def create_password_reset_token(self, email: str) -> str:
        """Issue a single-use reset token for an existing, enabled account.

        The token carries a fingerprint of the current password hash, so it
        stops verifying as soon as the password changes.
        """
        account = await self._find_account(email.strip().lower())
        if account.disabled:
            raise AuthProviderError(AuthProviderCode.USER_DISABLED)
        now_ts = int(self._clock())
        return build_signed_token(
            {
                "iss": self._config.issuer,
                "sub": account.uid,
                "email": account.email,
                "type": RESET_TOKEN_TYPE,
                "pwf": fingerprint(account.password_hash),
                "iat": now_ts,
                "exp": now_ts + self._config.password_reset_ttl_seconds,
            },
            self._config.secret_key,
        )

    async def reset_password(self, token: str, new_password: str) -> AuthIdentity:
        """Replace the password named by a reset token and end its sessions."""
        payload = self._decode(token, RESET_TOKEN_TYPE)
        try:
            row = await self._store.get(ACCOUNTS_COLLECTION, str(payload.get("sub") or ""))
        except InfrastructureError as exc:
            raise AuthProviderError(AuthProviderCode.NETWORK_REQUEST_FAILED, exc.message) from exc
        account = self._parse_account(row) if row is not None else None
        if account is None or not constant_time_equals(
            fingerprint(account.password_hash), str(payload.get("pwf") or "")
        ):
            raise AuthProviderError(
                AuthProviderCode.INVALID_CREDENTIAL, "Reset token is no longer valid"
            )

        try:
            await self._store.update(
                ACCOUNTS_COLLECTION, account.uid, {"password_hash": hash_password(new_password)}
            )
        except InfrastructureError as exc:
            raise AuthProviderError(AuthProviderCode.NETWORK_REQUEST_FAILED, exc.message) from exc
        for session in [s for s in self._sessions.values() if s.identity.uid == account.uid]:
            self.sign_out(session.session_id)
        LOGGER.info("Password reset completed", extra={"email": account.email})
        return AuthIdentity(uid=account.uid, email=account.email)

    def sign_out(self, session_id: str) -> None:
        """Close a session; unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        self._emit(AuthStateChange(session=session, signed_in=False))

    def verify_token(self, token: str) -> AuthSession:
        """Return the live session a bearer token belongs to."""
        payload = self._decode(token, SESSION_TOKEN_TYPE)
        session = self._sessions.get(str(payload.get("sid") or ""))
        if session is None or session.token != token:
            raise AuthProviderError(AuthProviderCode.SESSION_EXPIRED, "Session is no longer active")
        return session

    def get_session(self, session_id: str) -> AuthSession | None:
        return self._sessions.get(session_id)

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register an observer fired on every sign-in and sign-out."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _find_account(self, key: str) -> AuthAccount:
        try:
            rows = await self._store.query(ACCOUNTS_COLLECTION, email=key)
        except InfrastructureError as exc:
            raise AuthProviderError(AuthProviderCode.NETWORK_REQUEST_FAILED, exc.message) from exc
        if not rows:
            raise AuthProviderError(AuthProviderCode.USER_NOT_FOUND)
        account = self._parse_account(rows[0])
        if account is None:
            raise AuthProviderError(
                AuthProviderCode.INVALID_CREDENTIAL, "Account record is malformed"
            )
        return account

    @staticmethod
    def _parse_account(row: dict) -> AuthAccount | None:
        try:
            return AuthAccount.model_validate(row)
        except ValidationError:
            LOGGER.error("Malformed account record", extra={"email": str(row.get("email") or "")})
            return None

    def _decode(self, token: str, token_type: str) -> dict:
        try:
            payload = decode_signed_token(token, self._config.secret_key, now=self._clock())
        except ValueError as exc:
            raise AuthProviderError(AuthProviderCode.INVALID_CREDENTIAL, str(exc)) from exc
        if str(payload.get("iss") or "") != self._config.issuer:
            raise AuthProviderError(AuthProviderCode.INVALID_CREDENTIAL, "Invalid token issuer")
        if str(payload.get("type") or "") != token_type:
            raise AuthProviderError(AuthProviderCode.INVALID_CREDENTIAL, "Invalid token type")
        return payload

    def _issue_session(self, identity: AuthIdentity) -> AuthSession:
        now_ts = int(self._clock())
        session_id = uuid.uuid4().hex
        expires_at = now_ts + self._config.session_token_ttl_seconds
        token = build_signed_token(
            {
                "iss": self._config.issuer,
                "sub": identity.uid,
                "email": identity.email,
                "type": SESSION_TOKEN_TYPE,
                "sid": session_id,
                "iat": now_ts,
                "exp": expires_at,
            },
            self._config.secret_key,
        )
        return AuthSession(
            session_id=session_id,
            identity=identity,
            token=token,
            issued_at=now_ts,
            expires_at=expires_at,
        )

    def _emit(self, change: AuthStateChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                LOGGER.exception(
                    "Auth state listener failed",
                    extra={"session_id": change.session.session_id},
                )
