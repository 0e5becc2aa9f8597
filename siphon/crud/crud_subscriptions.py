"""CRUD operations for Sync Targets and Webhook Subscriptions."""

from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from siphon.models import ServiceIntegration
from siphon.models import SyncTarget
from siphon.models import WebhookSubscription
from siphon.sync_targets import target_kind


def get_sync_targets(db: Session, *, organization_id: int, kind: Optional[str] = None) -> List[SyncTarget]:
    targets = (
        db.query(SyncTarget)
        .join(ServiceIntegration, SyncTarget.service_integration_id == ServiceIntegration.id)
        .filter(ServiceIntegration.organization_id == organization_id, ServiceIntegration.soft_deleted_at.is_(None))
        .order_by(SyncTarget.id)
        .all()
    )
    if kind is not None:
        targets = [t for t in targets if target_kind(t.connection_url) == kind]
    return targets


def create_webhook_subscription(
    db: Session,
    *,
    organization_id: int,
    deliver_to_url: str,
    webhook_secret: str = "",
    service_integration_id: Optional[int] = None,
) -> WebhookSubscription:
    sub = WebhookSubscription(
        organization_id=organization_id,
        service_integration_id=service_integration_id,
        deliver_to_url=deliver_to_url,
        webhook_secret=webhook_secret,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub
