"""
Configuration and startup security checks for Polyglot.

Why: Prevent accidental insecure deployments. Settings are read from the
environment on access so tests can flip them with monkeypatch; a single guard
enforces minimal production safety without burdening local development.
"""
from __future__ import annotations

import logging
import os
import sys

PROD_LIKE = frozenset({"prod", "production", "stage", "staging"})
DEV_LIKE = frozenset({"dev", "development", "test", "local"})


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in PROD_LIKE


def _flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes")


class Settings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return (os.getenv("POLYGLOT_ENV", "dev") or "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.environment)

    @property
    def expose_error_details(self) -> bool:
        """Diagnostic detail (`error`, `stack`) is only sent outside production."""
        return not self.is_prod_like

    @property
    def stores_backend(self) -> str:
        return (os.getenv("STORES_BACKEND", "memory") or "memory").strip().lower()

    @property
    def signup_require_token(self) -> bool:
        return _flag("SIGNUP_REQUIRE_TOKEN")

    @property
    def cors_origins(self) -> list[str]:
        raw = os.getenv("CORS_ORIGINS", "http://localhost:5173")
        return [o.strip() for o in raw.split(",") if o.strip()]


def should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via POLYGLOT_ENABLE_DOTENV (default true).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    return _flag("POLYGLOT_ENABLE_DOTENV", "true")


def configure_logging(settings: Settings) -> None:
    """Root logging setup for the ASGI entry point.

    Verbose in development, warnings and above in production-like envs unless
    LOG_LEVEL says otherwise.
    """
    default = "WARNING" if settings.is_prod_like else "DEBUG"
    level = (os.getenv("LOG_LEVEL") or default).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def ensure_secure_config_on_startup(settings: Settings | None = None) -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like environments only):
    - FIREBASE_PROJECT_ID must be set, otherwise no token can be verified.
    - Stores must be the durable backends, not the in-memory ones.
    - DATABASE_URL must not explicitly disable TLS.
    - SIGNUP_REQUIRE_TOKEN must be enabled so signup binds to a verified subject.
    """
    settings = settings or Settings()
    if not settings.is_prod_like:
        return  # dev/test remain permissive

    if not (os.getenv("FIREBASE_PROJECT_ID") or "").strip():
        raise SystemExit("Refusing to start: FIREBASE_PROJECT_ID is unset in production.")

    if settings.stores_backend != "db":
        raise SystemExit("Refusing to start: STORES_BACKEND must be 'db' in production/staging.")

    dsn = os.getenv("DATABASE_URL", "")
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL is unset in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    if not (os.getenv("MONGO_URL") or "").strip():
        raise SystemExit("Refusing to start: MONGO_URL is unset in production.")

    if not settings.signup_require_token:
        raise SystemExit(
            "Refusing to start: SIGNUP_REQUIRE_TOKEN=true is mandatory in production/staging."
        )


__all__ = [
    "Settings",
    "should_load_dotenv",
    "configure_logging",
    "ensure_secure_config_on_startup",
]
