"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AuthConfig:
    """Authentication and session token configuration."""

    secret_key: str
    session_token_ttl_seconds: int
    issuer: str
    password_reset_ttl_seconds: int = 60 * 60


@dataclass(frozen=True)
class RateLimitConfig:
    """Failed-attempt throttling policy."""

    max_attempts: int = 5
    window_seconds: int = 15 * 60
    escalation_threshold: int = 10
    escalation_window_seconds: int = 60 * 60


@dataclass(frozen=True)
class SessionConfig:
    """Inactivity timeout policy for signed-in admin sessions."""

    timeout_minutes: float = 30
    warning_minutes: float = 5


@dataclass(frozen=True)
class CsrfConfig:
    """Anti-forgery token policy."""

    enabled: bool = True
    max_age_seconds: int = 24 * 60 * 60


@dataclass(frozen=True)
class RegistrationConfig:
    """Admin access request normalization settings."""

    phone_country_code: str = "+91"


@dataclass(frozen=True)
class StorageConfig:
    """Document store backends."""

    mongo_uri: str
    mongo_db: str
    runtime_dir: str


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int
    public_origin: str


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    rate_limit: RateLimitConfig
    session: SessionConfig
    csrf: CsrfConfig
    registration: RegistrationConfig
    storage: StorageConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        secret_key = (
            os.getenv("AUTH_SECRET_KEY", "").strip() or "dev-insecure-secret-change-me"
        )
        session_ttl = int(os.getenv("AUTH_SESSION_TOKEN_TTL_SECONDS", "43200"))
        issuer = os.getenv("AUTH_ISSUER", "school-admin").strip() or "school-admin"
        reset_ttl = int(os.getenv("AUTH_PASSWORD_RESET_TTL_SECONDS", "3600"))

        rate_limit = RateLimitConfig(
            max_attempts=int(os.getenv("RATE_LIMIT_MAX_ATTEMPTS", "5")),
            window_seconds=int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900")),
            escalation_threshold=int(
                os.getenv("RATE_LIMIT_ESCALATION_THRESHOLD", "10")
            ),
            escalation_window_seconds=int(
                os.getenv("RATE_LIMIT_ESCALATION_WINDOW_SECONDS", "3600")
            ),
        )
        session = SessionConfig(
            timeout_minutes=float(os.getenv("SESSION_TIMEOUT_MINUTES", "30")),
            warning_minutes=float(os.getenv("SESSION_WARNING_MINUTES", "5")),
        )
        csrf = CsrfConfig(
            enabled=_env_flag("CSRF_ENABLED", "1"),
            max_age_seconds=int(os.getenv("CSRF_TOKEN_MAX_AGE_SECONDS", "86400")),
        )
        registration = RegistrationConfig(
            phone_country_code=os.getenv("PHONE_COUNTRY_CODE", "+91").strip()
            or "+91",
        )
        storage = StorageConfig(
            mongo_uri=os.getenv("MONGODB_URI", "").strip(),
            mongo_db=os.getenv("MONGODB_DB", "school_admin").strip() or "school_admin",
            runtime_dir=os.getenv("RUNTIME_DIR", "runtime").strip() or "runtime",
        )
        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]
        request_max_bytes = int(os.getenv("REQUEST_MAX_BYTES", str(1024 * 1024)))
        public_origin = (
            os.getenv("PUBLIC_ORIGIN", "http://localhost:3000").strip()
            or "http://localhost:3000"
        )

        return AppConfig(
            auth=AuthConfig(
                secret_key=secret_key,
                session_token_ttl_seconds=session_ttl,
                issuer=issuer,
                password_reset_ttl_seconds=reset_ttl,
            ),
            rate_limit=rate_limit,
            session=session,
            csrf=csrf,
            registration=registration,
            storage=storage,
            logging=LoggingConfig(level=log_level),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=request_max_bytes,
                public_origin=public_origin,
            ),
        )
