"""Outbound webhook subscriptions and their delivery attempt history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from siphon.database import Base
from siphon.database import json_type
from siphon.utils.ids import new_opaque_id
from siphon.utils.time import ensure_utc
from siphon.utils.time import utc_now

# Recorded instead of an HTTP status when the request never got a response
# (timeout, DNS failure, connection refused). Must be >= 300 so the derived
# status reads as an error.
NETWORK_FAILURE_STATUS = 599


class WebhookSubscription(Base):
    """A URL that receives every row change for an integration (or a whole org)."""

    __tablename__ = "webhook_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    opaque_id = Column(String, nullable=False, unique=True, default=lambda: new_opaque_id("wsb"))

    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    # NULL means the subscription covers every integration in the organization
    service_integration_id = Column(Integer, ForeignKey("service_integrations.id"), nullable=True, index=True)
    service_integration = relationship("ServiceIntegration")

    deliver_to_url = Column(String, nullable=False)
    webhook_secret = Column(String, nullable=False, default="")

    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    deliveries = relationship("WebhookSubscriptionDelivery", back_populates="webhook_subscription")

    @property
    def active(self) -> bool:
        return self.deactivated_at is None

    def deactivate(self) -> None:
        self.deactivated_at = utc_now()


@dataclass(frozen=True)
class Attempt:
    at: datetime
    status: int

    @property
    def success(self) -> bool:
        return self.status < 300


class WebhookSubscriptionDelivery(Base):
    """One row-change payload destined for one subscription.

    ``attempt_timestamps`` and ``attempt_http_response_statuses`` are parallel
    lists and only ever grow together through :meth:`add_attempt`.
    """

    __tablename__ = "webhook_subscription_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    webhook_subscription_id = Column(Integer, ForeignKey("webhook_subscriptions.id"), nullable=False, index=True)
    webhook_subscription = relationship("WebhookSubscription", back_populates="deliveries")

    payload = Column(json_type(), nullable=False)
    # ISO-8601 strings so the lists round-trip through JSON on every dialect
    attempt_timestamps = Column(json_type(), nullable=False, default=list)
    attempt_http_response_statuses = Column(json_type(), nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def add_attempt(self, status: int, at: datetime | None = None) -> None:
        """Append one attempt to both parallel lists."""
        at = ensure_utc(at or utc_now())
        # Reassigned, not appended in place, so the ORM always sees the change
        self.attempt_timestamps = [*(self.attempt_timestamps or []), at.isoformat()]
        self.attempt_http_response_statuses = [*(self.attempt_http_response_statuses or []), int(status)]

    @property
    def attempts(self) -> list[Attempt]:
        return [
            Attempt(ensure_utc(datetime.fromisoformat(ts)), status)
            for ts, status in zip(self.attempt_timestamps or [], self.attempt_http_response_statuses or [])
        ]

    @property
    def attempt_count(self) -> int:
        return len(self.attempt_timestamps or [])

    @property
    def latest_attempt(self) -> Attempt | None:
        cnt = self.attempt_count
        if cnt == 0:
            return None
        return Attempt(
            ensure_utc(datetime.fromisoformat(self.attempt_timestamps[cnt - 1])),
            self.attempt_http_response_statuses[cnt - 1],
        )

    @property
    def latest_attempt_status(self) -> str:
        """One of 'pending' (no attempts), 'success', or 'error'."""
        att = self.latest_attempt
        if att is None:
            return "pending"
        return "success" if att.success else "error"
