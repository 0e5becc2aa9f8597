"""Declarative column definitions for mirror tables.

A :class:`Column` says where a value lives in an inbound payload and how to
turn it into something storable. Path lookups distinguish three outcomes:

* the key is absent (:data:`MISSING`)
* the key is present with a JSON ``null`` (``None``)
* the key is present with a value

Only the first can raise :class:`ColumnValueMissing`.
"""

from __future__ import annotations

import re
from datetime import date
from datetime import datetime
from datetime import timezone
from decimal import Decimal
from typing import Any
from typing import Callable
from typing import Sequence

import sqlalchemy as sa

from siphon.database import json_type
from siphon.replicators.errors import ColumnValueMissing
from siphon.utils.time import ensure_utc
from siphon.utils.time import utc_now

TEXT = "text"
INTEGER = "integer"
BIGINT = "bigint"
DECIMAL = "numeric"
FLOAT = "double precision"
BOOLEAN = "boolean"
TIMESTAMP = "timestamptz"
DATE = "date"
OBJECT = "jsonb"

_SQLA_TYPES = {
    TEXT: sa.Text,
    INTEGER: sa.Integer,
    BIGINT: sa.BigInteger,
    DECIMAL: sa.Numeric,
    FLOAT: sa.Float,
    BOOLEAN: sa.Boolean,
    TIMESTAMP: lambda: sa.DateTime(timezone=True),
    DATE: sa.Date,
    OBJECT: json_type,
}


class _Missing:
    """Sentinel for "the key is not in the payload"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

DEFAULTER_NOW = "now"


def dig(payload: Any, path: Sequence[str]) -> Any:
    """Walk *path* through nested dicts; return :data:`MISSING` if any key is absent."""
    current = payload
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return MISSING
        current = current[key]
    return current


# ---------------------------------------------------------------------------
# Converters
#
# A converter receives the looked-up value (``None`` when the key was absent
# or null) plus the whole resource, event, and enrichment payloads, and
# returns the value to store.
# ---------------------------------------------------------------------------

Converter = Callable[..., Any]


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 strings (including a trailing ``Z``) or epoch seconds into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def CONV_PARSE_DATETIME(value, **_) -> datetime | None:  # noqa: N802
    return parse_datetime(value)


def CONV_PARSE_DATE(value, **_) -> date | None:  # noqa: N802
    return parse_date(value)


def CONV_TO_INT(value, **_) -> int | None:  # noqa: N802
    if value is None or value == "":
        return None
    return int(value)


def converter_from_regex(pattern: str, coerce: Callable[[str], Any] | None = None) -> Converter:
    """Build a converter that extracts the first capture group of *pattern*.

    Non-matching values convert to ``None``.
    """
    rx = re.compile(pattern)

    def _convert(value, **_):
        if value is None:
            return None
        match = rx.search(str(value))
        if match is None:
            return None
        captured = match.group(1)
        return coerce(captured) if coerce else captured

    return _convert


def _coerce_for_type(type_: str, value: Any) -> Any:
    """Coerce JSON scalars into the Python type the SQL column expects."""
    if value is None:
        return None
    if type_ == TIMESTAMP:
        return parse_datetime(value)
    if type_ == DATE:
        return parse_date(value)
    if type_ == DECIMAL and not isinstance(value, Decimal):
        return Decimal(str(value))
    return value


class Column:
    """One typed, denormalized field of a mirror table."""

    def __init__(
        self,
        name: str,
        type: str,
        *,
        data_key: str | Sequence[str] | None = None,
        event_key: str | Sequence[str] | None = None,
        from_enrichment: bool = False,
        converter: Converter | None = None,
        defaulter: str | Callable[[], Any] | None = None,
        optional: bool = False,
        index: bool = False,
    ):
        if type not in _SQLA_TYPES:
            raise ValueError(f"Unknown column type {type!r} for column {name!r}")
        self.name = name
        self.type = type
        self.data_key = _as_path(data_key if data_key is not None else name)
        self.event_key = _as_path(event_key) if event_key is not None else None
        self.from_enrichment = from_enrichment
        self.converter = converter
        self.defaulter = defaulter
        self.optional = optional
        self.index = index

    def __repr__(self) -> str:
        return f"<Column {self.name} {self.type}>"

    @property
    def required(self) -> bool:
        return not self.optional

    def to_sqlalchemy(self, *, remote_key: bool = False) -> sa.Column:
        """Build the SQLAlchemy column; the remote key is ``UNIQUE NOT NULL``."""
        sql_type = _SQLA_TYPES[self.type]()
        if remote_key:
            return sa.Column(self.name, sql_type, nullable=False, unique=True)
        return sa.Column(self.name, sql_type, nullable=True)

    def default_value(self) -> Any:
        if self.defaulter is None:
            return MISSING
        if self.defaulter == DEFAULTER_NOW:
            return utc_now()
        if callable(self.defaulter):
            return self.defaulter()
        raise ValueError(f"Invalid defaulter {self.defaulter!r} for column {self.name!r}")

    def resolve(self, resource: dict, *, event: dict | None = None, enrichment: Any = None) -> Any:
        """Compute the storable value for this column.

        Order: path lookup (resource or enrichment, then the event envelope),
        converter, defaulter. A required column whose key is absent and that
        has neither converter nor defaulter raises :class:`ColumnValueMissing`.
        """
        source = enrichment if self.from_enrichment else resource
        value = dig(source, self.data_key)
        if value is MISSING and self.event_key is not None and event is not None:
            value = dig(event, self.event_key)

        if self.converter is not None:
            value = self.converter(
                None if value is MISSING else value,
                resource=resource,
                event=event,
                enrichment=enrichment,
            )
        elif value is not MISSING:
            value = _coerce_for_type(self.type, value)

        if value is MISSING or value is None:
            default = self.default_value()
            if default is not MISSING:
                value = default

        if value is MISSING:
            if self.optional:
                return None
            raise ColumnValueMissing(f"Column {self.name!r} has no value at {'.'.join(self.data_key)!r}")
        return value


def _as_path(key: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(key, str):
        return (key,)
    return tuple(key)


__all__ = [
    "Column",
    "MISSING",
    "DEFAULTER_NOW",
    "TEXT",
    "INTEGER",
    "BIGINT",
    "DECIMAL",
    "FLOAT",
    "BOOLEAN",
    "TIMESTAMP",
    "DATE",
    "OBJECT",
    "CONV_PARSE_DATETIME",
    "CONV_PARSE_DATE",
    "CONV_TO_INT",
    "converter_from_regex",
    "dig",
    "parse_datetime",
    "parse_date",
]
