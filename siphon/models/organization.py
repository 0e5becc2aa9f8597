"""Organization model – owner of service integrations and sync targets."""

from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from siphon.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)

    # URL-safe slug used in API paths (/v1/organizations/{key}/...)
    key = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False, default="")

    # Lowers the minimum sync target period for this org (NULL = use settings)
    minimum_sync_seconds = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    service_integrations = relationship("ServiceIntegration", back_populates="organization")
