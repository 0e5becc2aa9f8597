"""FastAPI application entrypoint.

Startup order matters: connectors are registered, then jobs and event
subscribers are wired, then (outside tests) the scheduler starts.
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI

from siphon.config import get_settings
from siphon.database import initialize_database
from siphon.jobs.builtin import setup_jobs
from siphon.jobs.registry import job_registry
from siphon.replicators.connectors import register_builtin_replicators
from siphon.routers.organizations import router as organizations_router
from siphon.routers.service_integrations import router as service_integrations_router
from siphon.routers.webhooks import router as webhooks_router

_settings = get_settings()

API_PREFIX = "/v1"


class StructuredFormatter(logging.Formatter):
    """Formatter that renders structured fields for grep-able logs.

    For logs with 'extra' dict, formats as:
        2025-12-15 03:19:33 INFO backfill_completed service_integration_id=4 pages=3 items=250
    """

    BUILTIN_ATTRS = frozenset(
        {
            "name",
            "msg",
            "args",
            "created",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "module",
            "msecs",
            "message",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "thread",
            "threadName",
            "taskName",
            "exc_info",
            "exc_text",
            "stack_info",
        }
    )

    def format(self, record):
        parts = [
            self.formatTime(record, "%Y-%m-%d %H:%M:%S"),
            record.levelname,
            record.getMessage(),
        ]

        extra_fields = []
        for key, value in record.__dict__.items():
            if key not in self.BUILTIN_ATTRS and not key.startswith("_"):
                if isinstance(value, str) and len(value) > 50:
                    value_str = value[:47] + "..."
                else:
                    value_str = str(value)
                extra_fields.append(f"{key}={value_str}")

        if extra_fields:
            parts.append(" ".join(extra_fields))

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(level: str) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    # Remove any existing handlers to avoid duplicates
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    # HTTP client debug can be extremely verbose in dev
    for noisy in ("httpx", "httpcore", "apscheduler", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


configure_logging(_settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown lifecycle."""
    settings = get_settings()
    register_builtin_replicators()
    setup_jobs(session_factory=app.state.session_factory)

    if not settings.testing:
        initialize_database()
        logger.info("Database tables initialized")

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = BackgroundScheduler(timezone="UTC")
        count = job_registry.schedule_all(scheduler)
        scheduler.start()
        logger.info("Scheduler started with %s job(s)", count)

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            job_registry.detach_scheduler()
            logger.info("Scheduler stopped")


def create_app(session_factory=None) -> FastAPI:
    app = FastAPI(title="siphon", lifespan=lifespan)
    app.state.session_factory = session_factory
    # Before the webhook router so "/service_integrations/create" is not read as an opaque id
    app.include_router(service_integrations_router, prefix=API_PREFIX)
    app.include_router(webhooks_router, prefix=API_PREFIX)
    app.include_router(organizations_router, prefix=API_PREFIX)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    return app


app = create_app()
