"""Application factory for the school admin back-office API."""

from __future__ import annotations

import logging
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from school_admin.admins.repository import AdminRequestRepository
from school_admin.admins.router import AdminRequestsRouter
from school_admin.admins.workflow import AdminRequestWorkflow
from school_admin.api.contracts import HealthResponse
from school_admin.api.http_setup import register_exception_handlers, register_http_middleware
from school_admin.auth.activity_log import LoginActivityLog
from school_admin.auth.authenticator import Authenticator
from school_admin.auth.csrf import CSRFGuard
from school_admin.auth.guards import RequestGuards
from school_admin.auth.middleware import create_auth_middleware
from school_admin.auth.password_reset import OutboxResetDelivery, PasswordResetService
from school_admin.auth.rate_limiter import PersistentRateLimiter
from school_admin.auth.router import create_auth_router
from school_admin.auth.security_events import SecurityEventLog
from school_admin.auth.service import LoginOrchestrator
from school_admin.auth.sessions import SessionSupervisor
from school_admin.core.config import AppConfig
from school_admin.core.logging import setup_logging
from school_admin.storage.document_store import DocumentStore

LOGGER = logging.getLogger(__name__)

DEV_SECRET_KEY = "dev-insecure-secret-change-me"


def create_app(config: AppConfig | None = None, *, app_root: Path | None = None) -> FastAPI:
    """Wire storage, auth and admin request services into a FastAPI app."""
    if config is None:
        load_dotenv()
        config = AppConfig.from_env()
    setup_logging(config.logging.level)
    if config.auth.secret_key == DEV_SECRET_KEY:
        LOGGER.warning("AUTH_SECRET_KEY is not set. Using insecure development key.")

    root = app_root or Path.cwd()
    runtime_dir = Path(config.storage.runtime_dir)
    if not runtime_dir.is_absolute():
        runtime_dir = root / runtime_dir
    runtime_dir.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title="School Admin API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-CSRF-Token", "X-Request-ID"],
    )

    store = DocumentStore(
        runtime_dir,
        mongo_uri=config.storage.mongo_uri,
        mongo_db=config.storage.mongo_db,
    )
    authenticator = Authenticator(store, config.auth)
    rate_limiter = PersistentRateLimiter(store, config.rate_limit)
    admins = AdminRequestRepository(store)
    activity_log = LoginActivityLog(store)
    security_events = SecurityEventLog(store)
    supervisor = SessionSupervisor(
        authenticator,
        session_config=config.session,
        csrf_config=config.csrf,
        public_origin=config.security.public_origin,
        allowed_origins=config.security.cors_allowed_origins,
    )
    orchestrator = LoginOrchestrator(
        authenticator=authenticator,
        rate_limiter=rate_limiter,
        admins=admins,
        activity_log=activity_log,
        security_events=security_events,
    )
    password_reset = PasswordResetService(
        authenticator=authenticator,
        rate_limiter=rate_limiter,
        security_events=security_events,
        delivery=OutboxResetDelivery(store),
        origin_guard=CSRFGuard(
            {},
            current_origin=config.security.public_origin,
            allowed_origins=config.security.cors_allowed_origins,
        ),
        reset_url_base=f"{config.security.public_origin.rstrip('/')}/admin/reset-password",
    )
    workflow = AdminRequestWorkflow(
        admins, authenticator, registration=config.registration
    )
    guards = RequestGuards(authenticator, supervisor, admins, config.csrf, security_events)

    app.middleware("http")(create_auth_middleware(authenticator))
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)

    app.include_router(
        create_auth_router(
            orchestrator, supervisor, guards, activity_log, security_events, password_reset
        )
    )
    app.include_router(AdminRequestsRouter(workflow, guards).build())

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", storage="mongo" if store.uses_mongo else "local")

    @app.on_event("shutdown")
    async def shutdown_services() -> None:
        supervisor.close()
        store.close()

    app.state.store = store
    app.state.authenticator = authenticator
    app.state.supervisor = supervisor
    app.state.workflow = workflow
    app.state.security_events = security_events
    return app


def run() -> None:
    """Serve the API with uvicorn."""
    uvicorn.run("school_admin.main:create_app", factory=True, host="0.0.0.0", port=8000)
