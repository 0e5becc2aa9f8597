"""Idempotency rows – see :mod:`siphon.idempotency` for the guard itself."""

from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy.sql import func

from siphon.database import Base
from siphon.database import json_type


class IdempotencyRecord(Base):
    __tablename__ = "idempotencies"

    id = Column(Integer, primary_key=True)
    key = Column(String, nullable=False, unique=True)

    # NULL means "claimed but not yet completed"
    last_run = Column(DateTime(timezone=True), nullable=True)
    stored_result = Column(json_type(), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
