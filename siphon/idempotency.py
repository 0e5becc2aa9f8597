"""Run a block at most once ever, or at most once per interval, per key.

Usage::

    Idempotency.once_ever().using(engine).under_key(f"welcome-{org.id}", send_welcome)

    result = (
        Idempotency.every(timedelta(minutes=10))
        .stored()
        .using(engine)
        .under_key("nightly-report", build_report)
    )

The guard needs its own transaction to hold the row lock while the block
runs. Handing it a connection that is already inside a transaction raises
:class:`NestedTransactionError`; chain :meth:`Idempotency.using_separate_connection`
to run on a fresh connection from the same engine instead.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any
from typing import Callable

import sqlalchemy as sa
from sqlalchemy import Connection
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from siphon.db_utils import begin_write_lock
from siphon.db_utils import dialect_insert
from siphon.models.idempotency import IdempotencyRecord
from siphon.utils.serialization import to_jsonable
from siphon.utils.time import ensure_utc
from siphon.utils.time import utc_now

logger = logging.getLogger(__name__)


class NestedTransactionError(RuntimeError):
    """The guard was asked to run inside a transaction it does not own."""


class _Noop:
    def __repr__(self) -> str:
        return "NOOP"


# Returned when the block was skipped and no result is stored.
NOOP = _Noop()

_table = IdempotencyRecord.__table__


class Idempotency:
    def __init__(self, interval: timedelta | None = None):
        self.interval = interval
        self._stored = False
        self._separate_connection = False
        self._bind: Connection | Engine | Session | None = None
        self._key: str | None = None

    @classmethod
    def once_ever(cls) -> "Idempotency":
        return cls(None)

    @classmethod
    def every(cls, interval: timedelta | int | float) -> "Idempotency":
        if not isinstance(interval, timedelta):
            interval = timedelta(seconds=interval)
        return cls(interval)

    def stored(self) -> "Idempotency":
        """Persist the block's (JSON-serializable) result and return it on skipped calls."""
        self._stored = True
        return self

    def using_separate_connection(self) -> "Idempotency":
        self._separate_connection = True
        return self

    def using(self, bind: Connection | Engine | Session) -> "Idempotency":
        self._bind = bind
        return self

    def under_key(self, key: str, func: Callable[[], Any] | None = None):
        self._key = key
        if func is None:
            return self
        return self.execute(func)

    # ------------------------------------------------------------------

    def _resolve_engine(self) -> tuple[Engine, Connection | None]:
        """Return the engine to use and, when allowed, the caller's connection."""
        bind = self._bind
        if bind is None:
            from siphon.database import default_engine  # local import – optional default

            if default_engine is None:
                raise ValueError("Idempotency needs an engine or connection; call .using(...)")
            return default_engine, None

        if isinstance(bind, Engine):
            return bind, None

        if isinstance(bind, Session):
            if bind.in_transaction() and not self._separate_connection:
                raise NestedTransactionError("Session already has an open transaction")
            return bind.get_bind(), None

        if bind.in_transaction():
            if not self._separate_connection:
                raise NestedTransactionError("Connection already has an open transaction")
            return bind.engine, None
        if self._separate_connection:
            return bind.engine, None
        return bind.engine, bind

    def execute(self, func: Callable[[], Any]) -> Any:
        if not self._key:
            raise ValueError("Idempotency key must be set with under_key()")

        engine, conn = self._resolve_engine()
        if conn is not None:
            return self._run(conn, func)
        with engine.connect() as fresh:
            return self._run(fresh, func)

    def _run(self, conn: Connection, func: Callable[[], Any]) -> Any:
        key = self._key
        with conn.begin():
            # Concurrent callers for the same key queue here until commit.
            begin_write_lock(conn)
            conn.execute(dialect_insert(conn, _table).values(key=key).on_conflict_do_nothing(index_elements=["key"]))
            row = conn.execute(
                sa.select(_table.c.last_run, _table.c.stored_result).where(_table.c.key == key).with_for_update()
            ).one()

            now = utc_now()
            if row.last_run is not None:
                if self.interval is None or now < ensure_utc(row.last_run) + self.interval:
                    logger.debug("idempotency_skipped key=%s", key)
                    return row.stored_result if self._stored else NOOP

            result = func()
            values = {"last_run": now, "updated_at": now}
            if self._stored:
                # Stored (and returned) as JSON: datetimes become ISO strings.
                result = to_jsonable(result)
                values["stored_result"] = result
            conn.execute(sa.update(_table).where(_table.c.key == key).values(**values))
            return result
