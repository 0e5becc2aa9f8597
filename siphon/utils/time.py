"""Timezone helpers – provide a single UTC-aware *now()* function.

SQLite hands timestamps back without tzinfo while Postgres returns aware
values, so anything comparing a stored timestamp against the clock goes
through :func:`ensure_utc` first.

``UTCBaseModel`` is a Pydantic BaseModel that serializes naive datetimes
with a trailing "Z" so API clients interpret them as UTC.
"""

from datetime import datetime
from datetime import timezone

from pydantic import BaseModel
from pydantic import ConfigDict


def utc_now() -> datetime:  # noqa: D401 – simple utility
    """Return *aware* current time in UTC."""

    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCBaseModel(BaseModel):
    """Pydantic BaseModel that appends 'Z' to naive datetime fields on serialization."""

    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            datetime: lambda dt: (dt.isoformat() + "Z") if dt.tzinfo is None else dt.isoformat(),
        },
    )


__all__ = ["utc_now", "ensure_utc", "UTCBaseModel"]
