"""Inbound webhook request log."""

from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy.sql import func

from siphon.database import Base
from siphon.database import json_type


class LoggedWebhook(Base):
    __tablename__ = "logged_webhooks"

    id = Column(Integer, primary_key=True, index=True)
    # NULL when the opaque id did not resolve to an integration we own
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    service_integration_opaque_id = Column(String, nullable=False, index=True)

    request_method = Column(String, nullable=False, default="POST")
    request_path = Column(String, nullable=False, default="")
    request_headers = Column(json_type(), nullable=False, default=dict)
    request_body = Column(Text, nullable=False, default="")
    response_status = Column(Integer, nullable=False)

    inserted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    truncated_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def truncated(self) -> bool:
        return self.truncated_at is not None
