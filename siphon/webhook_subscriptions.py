"""Outbound webhook subscriptions: fan out row changes and deliver them.

Delivery is at-least-once with bounded retry; ordering across deliveries is
not guaranteed. Every attempt is appended to the delivery's attempt history.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from datetime import timedelta
from typing import Any
from typing import Callable

import httpx
from sqlalchemy import or_
from sqlalchemy.orm import Session

from siphon.config import get_settings
from siphon.database import db_session
from siphon.events import EventType
from siphon.events import event_bus
from siphon.models import NETWORK_FAILURE_STATUS
from siphon.models import ServiceIntegration
from siphon.models import WebhookSubscription
from siphon.models import WebhookSubscriptionDelivery
from siphon.replicators.auth import hmac_sha256_hex
from siphon.utils.time import utc_now

logger = logging.getLogger(__name__)

SECRET_HEADER = "Siphon-Webhook-Secret"
SIGNATURE_HEADER = "Siphon-Signature"

# (delivery_id, run_at) -> None; supplied by the job layer
Enqueue = Callable[[int, datetime], None]


def active_subscriptions(db: Session, integration: ServiceIntegration) -> list[WebhookSubscription]:
    """Subscriptions for this integration plus org-wide ones."""
    return (
        db.query(WebhookSubscription)
        .filter(
            WebhookSubscription.deactivated_at.is_(None),
            or_(
                WebhookSubscription.service_integration_id == integration.id,
                (WebhookSubscription.service_integration_id.is_(None))
                & (WebhookSubscription.organization_id == integration.organization_id),
            ),
        )
        .order_by(WebhookSubscription.id)
        .all()
    )


def enqueue_delivery(
    db: Session,
    subscription: WebhookSubscription,
    payload: dict[str, Any],
    enqueue: Enqueue | None = None,
) -> WebhookSubscriptionDelivery:
    delivery = WebhookSubscriptionDelivery(webhook_subscription_id=subscription.id, payload=payload)
    db.add(delivery)
    db.commit()
    db.refresh(delivery)
    if enqueue is not None:
        enqueue(delivery.id, utc_now())
    return delivery


def fanout_row_upsert(
    db: Session,
    integration: ServiceIntegration,
    row: dict[str, Any],
    enqueue: Enqueue | None = None,
) -> list[WebhookSubscriptionDelivery]:
    """Create one delivery per active subscription for a changed row."""
    deliveries = []
    for sub in active_subscriptions(db, integration):
        payload = {"service_name": integration.service_name, "table_name": integration.table_name, **row}
        deliveries.append(enqueue_delivery(db, sub, payload, enqueue))
    if deliveries:
        logger.debug("row_upsert_fanout deliveries=%s", len(deliveries), extra=integration.log_tags)
    return deliveries


def handle_row_upsert(data: dict[str, Any], *, session_factory=None, enqueue: Enqueue | None = None) -> None:
    """Event bus subscriber for ``ROW_UPSERT``."""
    with db_session(session_factory) as db:
        integration = db.get(ServiceIntegration, data["service_integration_id"])
        if integration is None or integration.soft_deleted:
            logger.info("row_upsert_integration_missing id=%s", data["service_integration_id"])
            return
        fanout_row_upsert(db, integration, data["row"], enqueue)


def retry_delay(attempt: int) -> timedelta:
    """Backoff before retry number *attempt* (1-based), capped at one hour."""
    return timedelta(seconds=min(2 ** max(attempt, 1), 3600))


def attempt_delivery(
    db: Session,
    delivery: WebhookSubscriptionDelivery,
    client: httpx.Client | None = None,
) -> int | None:
    """POST the payload once and record the attempt; return the recorded status.

    Returns ``None`` without recording anything when the subscription has been
    deactivated or deleted.
    """
    sub = delivery.webhook_subscription
    if sub is None or not sub.active:
        logger.info("webhook_subscription_inactive delivery=%s", delivery.id)
        return None

    body = json.dumps(delivery.payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if sub.webhook_secret:
        headers[SECRET_HEADER] = sub.webhook_secret
        headers[SIGNATURE_HEADER] = hmac_sha256_hex(sub.webhook_secret, body)

    own_client = client is None
    client = client or httpx.Client(timeout=get_settings().webhook_delivery_timeout_secs)
    try:
        resp = client.post(sub.deliver_to_url, content=body, headers=headers)
        status = resp.status_code
    except httpx.HTTPError as e:
        logger.warning("webhook_delivery_network_error delivery=%s: %s", delivery.id, e)
        status = NETWORK_FAILURE_STATUS
    finally:
        if own_client:
            client.close()

    delivery.add_attempt(status)
    db.commit()
    event_bus.publish(
        EventType.DELIVERY_ATTEMPTED,
        {"delivery_id": delivery.id, "status": status, "attempt": delivery.attempt_count},
    )
    return status


def deliver(
    delivery_id: int,
    *,
    session_factory=None,
    client: httpx.Client | None = None,
    enqueue: Enqueue | None = None,
) -> int | None:
    """Job body: one attempt, then schedule a retry on failure while attempts remain."""
    with db_session(session_factory) as db:
        delivery = db.get(WebhookSubscriptionDelivery, delivery_id)
        if delivery is None:
            logger.info("webhook_delivery_missing id=%s", delivery_id)
            return None
        status = attempt_delivery(db, delivery, client)
        if status is None or status < 300:
            return status
        if delivery.attempt_count >= get_settings().webhook_delivery_max_attempts:
            logger.warning("webhook_delivery_gave_up id=%s attempts=%s", delivery.id, delivery.attempt_count)
            return status
        if enqueue is not None:
            enqueue(delivery.id, utc_now() + retry_delay(delivery.attempt_count))
        return status
