"""ServiceIntegration model – one configured connection to an external API."""

from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from siphon.database import Base
from siphon.utils.ids import new_opaque_id
from siphon.utils.time import utc_now


class ServiceIntegration(Base):
    """One configured instance of a connector, bound to an organization.

    Fields are filled in one at a time by the onboarding state machine
    (``process_state_change``); the replicator reads them on every call so
    nothing here is cached.
    """

    __tablename__ = "service_integrations"
    __table_args__ = (
        # Every organization's mirror tables live in the platform database.
        UniqueConstraint("table_name", name="unique_mirror_table_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    opaque_id = Column(String, nullable=False, unique=True, default=lambda: new_opaque_id("svi"))

    # Lookup name in the replicator registry (e.g. "increase_account_v1")
    service_name = Column(String, nullable=False)

    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    organization = relationship("Organization", back_populates="service_integrations")

    # Root URL of the API to backfill from
    api_url = Column(String, nullable=False, default="")
    webhook_secret = Column(String, nullable=False, default="")
    # Key/secret (or username/password) used for backfilling
    backfill_key = Column(String, nullable=False, default="")
    backfill_secret = Column(String, nullable=False, default="")

    table_name = Column(String, nullable=False)

    # Integration this one depends on (e.g. transactions depend on an item)
    depends_on_id = Column(Integer, ForeignKey("service_integrations.id"), nullable=True, index=True)
    depends_on = relationship("ServiceIntegration", remote_side=[id], backref="dependents")

    last_backfilled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    soft_deleted_at = Column(DateTime(timezone=True), nullable=True)

    sync_targets = relationship("SyncTarget", back_populates="service_integration")

    @property
    def soft_deleted(self) -> bool:
        return self.soft_deleted_at is not None

    def soft_delete(self) -> None:
        self.soft_deleted_at = utc_now()

    @property
    def log_tags(self) -> dict:
        """Structured logging fields identifying this integration."""
        return {
            "service_integration_id": self.id,
            "service_integration_name": self.service_name,
            "service_integration_table": self.table_name,
        }

    # ------------------------------------------------------------------
    # Replicator delegation
    # ------------------------------------------------------------------

    def replicator(self, db, registry=None, **kwargs):
        """Build the live replicator for this integration."""
        from siphon.replicators.registry import replicator_registry  # local import – avoids cycle

        return (registry or replicator_registry).create_replicator(self, db, **kwargs)

    def process_state_change(self, db, field: str, value):
        return self.replicator(db).process_state_change(field, value)

    def calculate_create_state_machine(self, db):
        return self.replicator(db).calculate_create_state_machine()

    def calculate_backfill_state_machine(self, db):
        return self.replicator(db).calculate_backfill_state_machine()

    def __repr__(self) -> str:
        return f"<ServiceIntegration {self.opaque_id} {self.service_name}>"
