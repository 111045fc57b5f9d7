from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi import FastAPI
from fastapi.routing import APIRoute
from starlette.requests import Request
from starlette.responses import Response

from school_admin.admins.models import AdminRequestSubmission, AdminStatus, CompleteRegistrationRequest
from school_admin.api.contracts import (
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    SessionActivityRequest,
)
from school_admin.auth.models import AuthSession, LoginRequest
from school_admin.auth.password_reset import PASSWORD_RESET_OUTBOX
from school_admin.core.config import (
    AppConfig,
    AuthConfig,
    CsrfConfig,
    LoggingConfig,
    RateLimitConfig,
    RegistrationConfig,
    SecurityConfig,
    SessionConfig,
    StorageConfig,
)
from school_admin.core.errors import AuthorizationError, SecurityAnomalyError, ValidationError
from school_admin.main import create_app

ORIGIN = "http://localhost:3000"
PASSWORD = "Str0ng!Pass"


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        auth=AuthConfig(secret_key="secret", session_token_ttl_seconds=900, issuer="test"),
        rate_limit=RateLimitConfig(),
        session=SessionConfig(),
        csrf=CsrfConfig(),
        registration=RegistrationConfig(),
        storage=StorageConfig(mongo_uri="", mongo_db="test", runtime_dir=str(tmp_path / "runtime")),
        logging=LoggingConfig(level="WARNING"),
        security=SecurityConfig(
            cors_allowed_origins=[ORIGIN],
            request_max_bytes=1024 * 1024,
            public_origin=ORIGIN,
        ),
    )


def _endpoint(app: FastAPI, path: str, method: str) -> Callable[..., Any]:
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path == path and method in route.methods:
            return route.endpoint
    raise AssertionError(f"Route {method} {path} not found")


def _request(
    path: str,
    method: str = "GET",
    *,
    headers: dict[str, str] | None = None,
    session: AuthSession | None = None,
) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "root_path": "",
        "headers": [
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in (headers or {}).items()
        ],
        "client": ("127.0.0.1", 1234),
        "server": ("testserver", 80),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    request = Request(scope, receive)
    if session is not None:
        request.state.session = session
    return request


def _dispatch_by_name(app: FastAPI, name: str):
    for middleware in app.user_middleware:
        dispatch = middleware.kwargs.get("dispatch")
        if callable(dispatch) and getattr(dispatch, "__name__", "") == name:
            return dispatch
    raise AssertionError(f"Dispatch {name!r} not found")


def _submission(first: str, email: str, phone: str, confirm: str = PASSWORD) -> AdminRequestSubmission:
    return AdminRequestSubmission(
        first_name=first,
        last_name="Doe",
        email=email,
        phone=phone,
        password=PASSWORD,
        confirm_password=confirm,
    )


def test_health_reports_local_storage(tmp_path: Path) -> None:
    app = create_app(_config(tmp_path))

    response = _endpoint(app, "/api/health", "GET")()

    assert response.status == "ok"
    assert response.storage == "local"


def test_submit_rejects_mismatched_confirmation(tmp_path: Path) -> None:
    app = create_app(_config(tmp_path))
    submit = _endpoint(app, "/api/admin-requests", "POST")

    with pytest.raises(ValidationError, match="Passwords do not match"):
        asyncio.run(submit(_submission("Jane", "jane@example.com", "9876543210", "Other!Pass1")))


def test_auth_middleware_requires_bearer_token_on_protected_paths(tmp_path: Path) -> None:
    app = create_app(_config(tmp_path))
    dispatch = _dispatch_by_name(app, "auth_middleware")
    reached: list[str] = []

    async def call_next(request: Request) -> Response:
        reached.append(request.url.path)
        return Response(status_code=200)

    async def scenario():
        missing = await dispatch(_request("/api/admin-requests"), call_next)
        bogus = await dispatch(
            _request("/api/admin-requests", headers={"Authorization": "Bearer nope"}), call_next
        )
        public = await dispatch(_request("/api/admin-requests", "POST"), call_next)
        health = await dispatch(_request("/api/health"), call_next)
        return missing, bogus, public, health

    missing, bogus, public, health = asyncio.run(scenario())

    assert missing.status_code == 401
    assert b"AUTH_MISSING_TOKEN" in missing.body
    assert bogus.status_code == 401
    assert b"AUTH_TOKEN_INVALID" in bogus.body
    assert public.status_code == 200
    assert health.status_code == 200
    assert reached == ["/api/admin-requests", "/api/health"]


def test_admin_back_office_flow(tmp_path: Path) -> None:
    app = create_app(_config(tmp_path))
    workflow = app.state.workflow
    supervisor = app.state.supervisor
    dispatch = _dispatch_by_name(app, "auth_middleware")

    submit = _endpoint(app, "/api/admin-requests", "POST")
    complete = _endpoint(app, "/api/admin-requests/complete-registration", "POST")
    login = _endpoint(app, "/api/auth/login", "POST")
    me = _endpoint(app, "/api/auth/me", "GET")
    list_requests = _endpoint(app, "/api/admin-requests", "GET")
    stats = _endpoint(app, "/api/admin-requests/stats", "GET")
    review = _endpoint(app, "/api/admin-requests/{request_id}/{action}", "POST")
    delete = _endpoint(app, "/api/admin-requests/{request_id}", "DELETE")
    activity = _endpoint(app, "/api/auth/session/activity", "POST")
    extend = _endpoint(app, "/api/auth/session/extend", "POST")
    session_state = _endpoint(app, "/api/auth/session", "GET")
    activities = _endpoint(app, "/api/auth/login-activities", "GET")
    logout = _endpoint(app, "/api/auth/logout", "POST")
    security_events = _endpoint(app, "/api/auth/security-events", "GET")
    resolve_event = _endpoint(app, "/api/auth/security-events/{event_id}/resolve", "POST")

    async def scenario() -> dict[str, Any]:
        out: dict[str, Any] = {}
        jane = await submit(_submission("Jane", "jane@example.com", "9876543210"))
        await workflow.approve(jane.id)
        await complete(CompleteRegistrationRequest(email="jane@example.com", password=PASSWORD))

        signed_in = await login(
            LoginRequest(email="jane@example.com", password=PASSWORD),
            _request("/api/auth/login", "POST", headers={"User-Agent": "pytest"}),
        )
        out["login"] = signed_in

        captured: list[AuthSession] = []

        async def call_next(request: Request) -> Response:
            captured.append(request.state.session)
            return Response(status_code=200)

        await dispatch(
            _request(
                "/api/auth/me", headers={"Authorization": f"Bearer {signed_in.access_token}"}
            ),
            call_next,
        )
        session = captured[0]
        out["me"] = await me(_request("/api/auth/me", session=session))

        john = await submit(_submission("John", "john@example.com", "9123456780"))
        with pytest.raises(SecurityAnomalyError):
            await review(john.id, "approve", _request("/x", "POST", session=session))
        with pytest.raises(SecurityAnomalyError):
            await review(
                john.id,
                "approve",
                _request(
                    "/x",
                    "POST",
                    session=session,
                    headers={"X-CSRF-Token": signed_in.csrf_token, "Origin": "https://evil.example"},
                ),
            )
        mutation_headers = {"X-CSRF-Token": signed_in.csrf_token, "Origin": ORIGIN}
        out["approved"] = await review(
            john.id, "approve", _request("/x", "POST", session=session, headers=mutation_headers)
        )
        with pytest.raises(ValidationError):
            await review(john.id, "promote", _request("/x", "POST", session=session, headers=mutation_headers))

        out["listed"] = await list_requests(_request("/api/admin-requests", session=session))
        out["stats"] = await stats(_request("/api/admin-requests/stats", session=session))
        out["activity"] = await activity(
            SessionActivityRequest(events=["click", "bogus"]),
            _request("/api/auth/session/activity", "POST", session=session),
        )
        out["extended"] = await extend(
            _request("/api/auth/session/extend", "POST", session=session, headers=mutation_headers)
        )
        out["state"] = await session_state(_request("/api/auth/session", session=session))
        out["activities"] = await activities(_request("/api/auth/login-activities", session=session), 50)
        out["deleted"] = await delete(
            john.id, _request("/x", "DELETE", session=session, headers=mutation_headers)
        )
        out["events"] = await security_events(
            _request("/api/auth/security-events", session=session), 50, False
        )
        out["resolved_event"] = await resolve_event(
            out["events"][0].id, _request("/x", "POST", session=session, headers=mutation_headers)
        )

        await workflow.revoke(jane.id, "root@example.com")
        with pytest.raises(AuthorizationError):
            await me(_request("/api/auth/me", session=session))
        out["tracking_after_revoke"] = supervisor.is_tracking(session.session_id)
        out["denials"] = [
            event.details["reason"]
            for event in await app.state.security_events.recent(unresolved_only=True)
            if event.type == "access_denied"
        ]
        out["logout"] = await logout(_request("/api/auth/logout", "POST", session=session))
        supervisor.close()
        return out

    out = asyncio.run(scenario())

    assert len(out["login"].csrf_token) == 64
    assert out["login"].user.email == "jane@example.com"
    assert out["me"].user.first_name == "Jane"
    assert out["approved"].status is AdminStatus.APPROVED
    assert out["approved"].approved_by == "jane@example.com"
    assert [item.email for item in out["listed"].items] == ["john@example.com", "jane@example.com"]
    assert all("credential_hash" not in item.model_dump() for item in out["listed"].items)
    assert out["stats"].approved == 2
    assert out["activity"].accepted == 1
    assert out["extended"].extended is True
    assert out["state"].state == "active"
    assert out["activities"][0].status == "success"
    assert out["activities"][0].user_agent == "pytest"
    assert out["deleted"].deleted is True
    assert out["tracking_after_revoke"] is False
    assert [event.type for event in out["events"]] == ["csrf_rejected", "csrf_rejected"]
    assert out["resolved_event"].resolved_by == "jane@example.com"
    assert out["denials"] == ["revoked"]
    assert out["logout"].status == "ok"


def test_password_reset_routes_are_public_and_reset_the_password(tmp_path: Path) -> None:
    app = create_app(_config(tmp_path))
    workflow = app.state.workflow
    dispatch = _dispatch_by_name(app, "auth_middleware")
    submit = _endpoint(app, "/api/admin-requests", "POST")
    complete = _endpoint(app, "/api/admin-requests/complete-registration", "POST")
    request_reset = _endpoint(app, "/api/auth/password-reset", "POST")
    confirm_reset = _endpoint(app, "/api/auth/password-reset/confirm", "POST")
    reached: list[str] = []

    async def call_next(request: Request) -> Response:
        reached.append(request.url.path)
        return Response(status_code=200)

    async def scenario() -> dict[str, Any]:
        out: dict[str, Any] = {}
        jane = await submit(_submission("Jane", "jane@example.com", "9876543210"))
        await workflow.approve(jane.id)
        await complete(CompleteRegistrationRequest(email="jane@example.com", password=PASSWORD))

        await dispatch(_request("/api/auth/password-reset", "POST"), call_next)
        await dispatch(_request("/api/auth/password-reset/confirm", "POST"), call_next)

        headers = {"Origin": ORIGIN}
        out["known"] = await request_reset(
            PasswordResetRequest(email="jane@example.com"),
            _request("/api/auth/password-reset", "POST", headers=headers),
        )
        out["unknown"] = await request_reset(
            PasswordResetRequest(email="ghost@example.com"),
            _request("/api/auth/password-reset", "POST", headers=headers),
        )
        queued = await app.state.store.list_documents(PASSWORD_RESET_OUTBOX)
        token = parse_qs(urlsplit(queued[0]["reset_url"]).query)["token"][0]
        out["confirmed"] = await confirm_reset(
            PasswordResetConfirmRequest(
                token=token, password="N3w!Secret", confirm_password="N3w!Secret"
            )
        )
        out["session"] = await app.state.authenticator.sign_in("jane@example.com", "N3w!Secret")
        app.state.supervisor.close()
        return out

    out = asyncio.run(scenario())

    assert reached == ["/api/auth/password-reset", "/api/auth/password-reset/confirm"]
    assert out["known"].message == out["unknown"].message
    assert out["confirmed"].email == "jane@example.com"
    assert out["session"].identity.email == "jane@example.com"
