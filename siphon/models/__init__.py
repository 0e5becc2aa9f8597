"""ORM models for the platform tables.

Mirror tables are intentionally absent: each replicator builds its own
``Table`` at runtime from its column declarations.
"""

from siphon.models.idempotency import IdempotencyRecord
from siphon.models.logged_webhook import LoggedWebhook
from siphon.models.organization import Organization
from siphon.models.service_integration import ServiceIntegration
from siphon.models.sync_target import SyncTarget
from siphon.models.webhook_subscription import NETWORK_FAILURE_STATUS
from siphon.models.webhook_subscription import Attempt
from siphon.models.webhook_subscription import WebhookSubscription
from siphon.models.webhook_subscription import WebhookSubscriptionDelivery

__all__ = [
    "Attempt",
    "IdempotencyRecord",
    "LoggedWebhook",
    "NETWORK_FAILURE_STATUS",
    "Organization",
    "ServiceIntegration",
    "SyncTarget",
    "WebhookSubscription",
    "WebhookSubscriptionDelivery",
]
