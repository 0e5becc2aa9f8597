"""Helpers for turning mirror rows into JSON-safe payloads."""

from datetime import date
from datetime import datetime
from decimal import Decimal
from typing import Any

from siphon.utils.time import ensure_utc


def to_jsonable(value: Any) -> Any:
    """Recursively convert datetimes, dates and decimals into JSON scalars."""
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value) if value % 1 else int(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
