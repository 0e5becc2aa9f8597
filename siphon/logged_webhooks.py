"""Inbound webhook log and its retention policy."""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta
from typing import Iterable

from sqlalchemy import and_
from sqlalchemy import delete
from sqlalchemy import update
from sqlalchemy.orm import Session

from siphon.models import LoggedWebhook
from siphon.replicators.auth import WebhookRequest
from siphon.utils.time import utc_now

logger = logging.getLogger(__name__)

DELETE_UNOWNED = timedelta(days=14)
TRUNCATE_SUCCESSES = timedelta(days=7)
DELETE_SUCCESSES = timedelta(days=90)
TRUNCATE_FAILURES = timedelta(days=30)
DELETE_FAILURES = timedelta(days=90)

# Headers never written to the log
REDACTED_HEADERS = frozenset({"authorization", "cookie"})


def log_webhook(
    db: Session,
    *,
    opaque_id: str,
    request: WebhookRequest,
    response_status: int,
    organization_id: int | None = None,
) -> LoggedWebhook:
    headers = {k: ("***" if k in REDACTED_HEADERS else v) for k, v in request.headers.items()}
    logged = LoggedWebhook(
        service_integration_opaque_id=opaque_id,
        organization_id=organization_id,
        request_method=request.method,
        request_path=request.path,
        request_headers=headers,
        request_body=request.body.decode("utf-8", errors="replace"),
        response_status=response_status,
        inserted_at=utc_now(),
    )
    db.add(logged)
    db.commit()
    return logged


def truncate_logs(db: Session, ids: Iterable[int], now: datetime | None = None) -> int:
    """Drop bodies and headers but keep the rows."""
    ids = list(ids)
    if not ids:
        return 0
    result = db.execute(
        update(LoggedWebhook)
        .where(LoggedWebhook.id.in_(ids), LoggedWebhook.truncated_at.is_(None))
        .values(request_body="", request_headers={}, truncated_at=now or utc_now())
    )
    db.commit()
    return result.rowcount


def trim(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Apply the retention policy; return counts per action."""
    now = now or utc_now()
    success = LoggedWebhook.response_status < 400
    failure = LoggedWebhook.response_status >= 400
    owned = LoggedWebhook.organization_id.is_not(None)

    counts = {}
    counts["deleted_unowned"] = db.execute(
        delete(LoggedWebhook).where(LoggedWebhook.organization_id.is_(None), LoggedWebhook.inserted_at < now - DELETE_UNOWNED)
    ).rowcount
    counts["deleted_successes"] = db.execute(
        delete(LoggedWebhook).where(owned, success, LoggedWebhook.inserted_at < now - DELETE_SUCCESSES)
    ).rowcount
    counts["deleted_failures"] = db.execute(
        delete(LoggedWebhook).where(owned, failure, LoggedWebhook.inserted_at < now - DELETE_FAILURES)
    ).rowcount
    db.commit()

    to_truncate = [
        row_id
        for (row_id,) in db.query(LoggedWebhook.id).filter(
            LoggedWebhook.truncated_at.is_(None),
            owned,
            (and_(success, LoggedWebhook.inserted_at < now - TRUNCATE_SUCCESSES))
            | (and_(failure, LoggedWebhook.inserted_at < now - TRUNCATE_FAILURES)),
        )
    ]
    counts["truncated"] = truncate_logs(db, to_truncate, now)
    logger.info("logged_webhooks_trimmed %s", counts)
    return counts
