"""SyncTarget model – periodic bulk export of a mirror table."""

from datetime import timedelta

from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from siphon.database import Base
from siphon.utils.ids import new_opaque_id
from siphon.utils.time import ensure_utc


class SyncTarget(Base):
    __tablename__ = "sync_targets"

    id = Column(Integer, primary_key=True, index=True)
    opaque_id = Column(String, nullable=False, unique=True, default=lambda: new_opaque_id("syt"))

    service_integration_id = Column(Integer, ForeignKey("service_integrations.id"), nullable=False, index=True)
    service_integration = relationship("ServiceIntegration", back_populates="sync_targets")

    connection_url = Column(String, nullable=False)
    # Empty strings mean "use the default schema / the integration's table name"
    schema = Column(String, nullable=False, default="")
    table = Column(String, nullable=False, default="")

    period_seconds = Column(Integer, nullable=False)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def next_sync_at(self):
        """When this target becomes due again (None = due now, never synced)."""
        if self.last_synced_at is None:
            return None
        return ensure_utc(self.last_synced_at) + timedelta(seconds=self.period_seconds)

    def is_due(self, now) -> bool:
        next_at = self.next_sync_at()
        return next_at is None or now >= next_at

    def __repr__(self) -> str:
        return f"<SyncTarget {self.opaque_id} every {self.period_seconds}s>"
