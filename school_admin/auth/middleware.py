"""HTTP middleware that enforces auth on protected API routes."""

from __future__ import annotations

from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse

from school_admin.api.contracts import ApiErrorResponse
from school_admin.api.errors import ApiErrorCode
from school_admin.auth.authenticator import AuthProviderCode, AuthProviderError, Authenticator

PUBLIC_ROUTES = frozenset(
    {
        ("GET", "/api/health"),
        ("POST", "/api/auth/login"),
        ("POST", "/api/auth/password-reset"),
        ("POST", "/api/auth/password-reset/confirm"),
        ("POST", "/api/admin-requests"),
        ("POST", "/api/admin-requests/complete-registration"),
    }
)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract bearer token from authorization header value."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def _unauthorized(error_code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=ApiErrorResponse(error_code=error_code, message=message).model_dump(),
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_auth_middleware(authenticator: Authenticator) -> Callable:
    """Create middleware that resolves the bearer session for protected paths."""

    async def auth_middleware(request: Request, call_next: Callable):
        """Validate auth for protected API paths and attach session to request state."""
        path = request.url.path
        if not path.startswith("/api/") or request.method == "OPTIONS":
            return await call_next(request)
        if (request.method, path.rstrip("/") or "/") in PUBLIC_ROUTES:
            return await call_next(request)

        token = extract_bearer_token(request.headers.get("authorization"))
        if not token:
            return _unauthorized(ApiErrorCode.AUTH_MISSING_TOKEN, "Missing bearer token")

        try:
            session = authenticator.verify_token(token)
        except AuthProviderError as exc:
            message = (
                "Session expired. Please sign in again."
                if exc.code is AuthProviderCode.SESSION_EXPIRED
                else "Invalid access token"
            )
            return _unauthorized(ApiErrorCode.AUTH_TOKEN_INVALID, message)

        request.state.session = session
        return await call_next(request)

    return auth_middleware
