"""Built-in jobs and event wiring.

Call :func:`setup_jobs` once at startup, after the replicator registry is
populated and before any webhook is processed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from siphon.database import db_session
from siphon.events import EventBus
from siphon.events import EventType
from siphon.events import event_bus
from siphon.jobs.registry import JobConfig
from siphon.jobs.registry import JobRegistry
from siphon.jobs.registry import job_registry
from siphon.logged_webhooks import trim
from siphon.models import ServiceIntegration
from siphon.sync_targets import enqueue_scheduled
from siphon.sync_targets import run_sync
from siphon.webhook_subscriptions import deliver
from siphon.webhook_subscriptions import handle_row_upsert

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# One-shot jobs
# ---------------------------------------------------------------------------


def run_sync_target(target_id: int) -> bool:
    return run_sync(target_id, session_factory=job_registry.session_factory)


def backfill_integration(integration_id: int) -> int | None:
    with db_session(job_registry.session_factory) as db:
        sint = db.get(ServiceIntegration, integration_id)
        if sint is None or sint.soft_deleted:
            logger.info("backfill_integration_missing id=%s", integration_id)
            return None
        return sint.replicator(db).backfill()


def create_mirror_table(integration_id: int) -> None:
    with db_session(job_registry.session_factory) as db:
        sint = db.get(ServiceIntegration, integration_id)
        if sint is None:
            logger.info("create_mirror_table_missing id=%s", integration_id)
            return
        sint.replicator(db).create_table(if_not_exists=True)


def send_webhook(delivery_id: int) -> int | None:
    return deliver(delivery_id, session_factory=job_registry.session_factory, enqueue=enqueue_send_webhook)


# ---------------------------------------------------------------------------
# Enqueue helpers
# ---------------------------------------------------------------------------


def enqueue_sync_target(target_id: int, run_at: datetime) -> None:
    job_registry.enqueue(f"sync-target-{target_id}", run_sync_target, run_at, target_id)


def enqueue_send_webhook(delivery_id: int, run_at: datetime) -> None:
    job_registry.enqueue(f"send-webhook-{delivery_id}", send_webhook, run_at, delivery_id)


def enqueue_backfill(integration_id: int) -> None:
    job_registry.enqueue(f"backfill-{integration_id}", backfill_integration, None, integration_id)


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


def sync_target_enqueue_scheduled() -> list[int]:
    with db_session(job_registry.session_factory) as db:
        return enqueue_scheduled(db, enqueue_sync_target)


def logged_webhooks_trim() -> dict[str, int]:
    with db_session(job_registry.session_factory) as db:
        return trim(db)


# ---------------------------------------------------------------------------
# Event subscribers
# ---------------------------------------------------------------------------


def on_row_upsert(data: dict) -> None:
    handle_row_upsert(data, session_factory=job_registry.session_factory, enqueue=enqueue_send_webhook)


def on_integration_created(data: dict) -> None:
    job_registry.enqueue(
        f"create-mirror-table-{data['service_integration_id']}",
        create_mirror_table,
        None,
        data["service_integration_id"],
    )


BUILTIN_JOBS = (
    JobConfig(
        id="sync-target-enqueue-scheduled",
        cron="* * * * *",
        func=sync_target_enqueue_scheduled,
        description="Enqueue a sync for every sync target that is due",
    ),
    JobConfig(
        id="logged-webhooks-trim",
        cron="17 3 * * *",
        func=logged_webhooks_trim,
        description="Truncate and delete old inbound webhook logs",
    ),
)


def setup_jobs(bus: EventBus | None = None, session_factory=None) -> JobRegistry:
    """Register built-in jobs and subscribe the event handlers.

    ``session_factory`` is handed to every job body; ``None`` means the app
    default.
    """
    bus = bus or event_bus
    job_registry.session_factory = session_factory
    for config in BUILTIN_JOBS:
        job_registry.register(config)
    bus.subscribe(EventType.ROW_UPSERT, on_row_upsert)
    bus.subscribe(EventType.INTEGRATION_CREATED, on_integration_created)
    return job_registry
