"""Centralised configuration helper.

This module eliminates scattered ``os.getenv`` calls by exposing a single
:class:`Settings` container (retrieved via :func:`get_settings`).

We intentionally avoid a runtime dependency on *pydantic-settings*; a small
dataclass populated from the environment covers everything the engine needs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# siphon/config/__init__.py -> parents[2] = repository root
_REPO_ROOT = Path(__file__).resolve().parents[2]


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    scheduler_enabled: bool

    # Database ---------------------------------------------------------
    database_url: str
    # Optional read-only credential for mirror tables (falls back to database_url)
    readonly_database_url: str | None

    # Misc --------------------------------------------------------------
    log_level: str
    environment: Any
    # Public URL used to render webhook endpoints during onboarding
    api_url: str

    # Backfill ----------------------------------------------------------
    backfill_max_attempts: int
    http_timeout_secs: float

    # Sync targets ------------------------------------------------------
    sync_min_period_seconds: int
    sync_max_period_seconds: int
    sync_jitter_seconds: int
    sync_page_size: int

    # Outbound webhook subscriptions -----------------------------------
    webhook_delivery_max_attempts: int
    webhook_delivery_timeout_secs: float

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:  # pragma: no cover – test util
        for key, value in kwargs.items():
            if not hasattr(self, key):  # pragma: no cover – safety
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    testing = _truthy(os.getenv("TESTING"))

    # Unit tests set NODE_ENV=test and expect `.env.test` when present.
    node_env = os.getenv("NODE_ENV", "development")
    env_path = _REPO_ROOT / ".env"
    if node_env == "test":
        test_env_path = _REPO_ROOT / ".env.test"
        if test_env_path.exists():
            env_path = test_env_path

    if env_path.exists():
        # Explicit process env wins over the file so tests can pin values.
        load_dotenv(env_path, override=False)

    return Settings(
        testing=testing,
        scheduler_enabled=_truthy(os.getenv("SCHEDULER_ENABLED", "0" if testing else "1")),
        database_url=os.getenv("DATABASE_URL", ""),
        readonly_database_url=os.getenv("READONLY_DATABASE_URL") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        environment=os.getenv("ENVIRONMENT"),
        api_url=os.getenv("API_URL", "http://localhost:8000").rstrip("/"),
        backfill_max_attempts=int(os.getenv("BACKFILL_MAX_ATTEMPTS", "3")),
        http_timeout_secs=float(os.getenv("HTTP_TIMEOUT_SECS", "30")),
        sync_min_period_seconds=int(os.getenv("SYNC_MIN_PERIOD_SECONDS", "600")),
        sync_max_period_seconds=int(os.getenv("SYNC_MAX_PERIOD_SECONDS", "86400")),
        sync_jitter_seconds=int(os.getenv("SYNC_JITTER_SECONDS", "20")),
        sync_page_size=int(os.getenv("SYNC_PAGE_SIZE", "500")),
        webhook_delivery_max_attempts=int(os.getenv("WEBHOOK_DELIVERY_MAX_ATTEMPTS", "25")),
        webhook_delivery_timeout_secs=float(os.getenv("WEBHOOK_DELIVERY_TIMEOUT_SECS", "10")),
    )


# ------------------------------------------------------------------
# Runtime validation – fail fast when *required* settings are missing.
# ------------------------------------------------------------------


def _validate_required(settings: Settings) -> None:  # noqa: D401 – helper
    """Abort startup when mandatory configuration is missing.

    Tests construct their own engines, so the check is skipped when the
    *TESTING* flag is active.
    """

    if settings.testing:
        return

    missing_vars = []
    if not settings.database_url:
        missing_vars.append("DATABASE_URL")

    if settings.backfill_max_attempts < 1:
        missing_vars.append("BACKFILL_MAX_ATTEMPTS (must be >= 1)")

    if settings.sync_min_period_seconds > settings.sync_max_period_seconds:
        missing_vars.append("SYNC_MIN_PERIOD_SECONDS (must not exceed SYNC_MAX_PERIOD_SECONDS)")

    if missing_vars:
        raise RuntimeError(
            f"CRITICAL: Missing or invalid environment variables: {', '.join(missing_vars)}\n"
            f"Set these in your .env file or deployment environment."
        )


def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return :class:`Settings` instance loaded from environment."""

    settings = _load_settings()
    _validate_required(settings)
    return settings


__all__ = [
    "Settings",
    "get_settings",
]
