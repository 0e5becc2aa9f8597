"""Shared database utilities.

Low-level helpers that need to be importable without pulling in the models:
dialect detection, dialect-specific ``INSERT`` constructs for upserts, and
dialect-aware advisory locking.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING
from typing import Generator

from sqlalchemy import text
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects import sqlite
from sqlalchemy.engine.url import make_url

from siphon.utils.time import utc_now

if TYPE_CHECKING:
    from sqlalchemy import Connection
    from sqlalchemy import Table
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def generate_holder_id() -> str:
    """Generate a globally unique lock holder ID.

    Combines hostname, PID, thread ID, and a short UUID so two acquisitions
    never share an identity, even inside one thread.
    """
    hostname = socket.gethostname()[:20]
    pid = os.getpid()
    thread_id = threading.current_thread().ident or 0
    unique = uuid.uuid4().hex[:8]

    return f"{hostname}:{pid}:{thread_id}:{unique}"


def is_sqlite_url(url: str) -> bool:
    """Check if a database URL is SQLite, handling quoted URLs."""
    url = (url or "").strip()
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()

    if not url:
        return False

    try:
        return make_url(url).drivername.startswith("sqlite")
    except Exception:
        # Fallback to string matching if parsing fails
        return url.startswith("sqlite")


def is_sqlite_session(db: "Session") -> bool:
    """Check if a database session is using SQLite."""
    return db.bind.dialect.name == "sqlite"


def is_sqlite_bind(bind) -> bool:
    """Check if an Engine or Connection is using SQLite."""
    return bind.dialect.name == "sqlite"


def dialect_insert(bind, table: "Table"):
    """Return an ``INSERT`` construct that supports ``ON CONFLICT`` for *bind*.

    Postgres and SQLite both expose ``on_conflict_do_update`` /
    ``on_conflict_do_nothing`` with the same signature.
    """
    name = bind.dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise ValueError(f"Upserts are not supported for dialect '{name}'")


def begin_write_lock(conn: "Connection") -> None:
    """On SQLite, take the database write lock for the transaction now.

    pysqlite defers ``BEGIN`` until the first write, and a transaction that
    reads before it writes can fail with SQLITE_BUSY instead of waiting.
    Postgres callers use ``SELECT ... FOR UPDATE`` instead; this is a no-op there.
    """
    if is_sqlite_bind(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# =============================================================================
# Dialect-Aware Advisory Locking
# =============================================================================
#
# PostgreSQL provides session-scoped advisory locks that auto-release when the
# connection goes away, which is exactly what cross-process mutual exclusion
# needs. We use the two-key form ``pg_try_advisory_lock(keyspace, key)`` so
# each feature owns a keyspace and ids never collide across features.
#
# SQLite has no advisory locks, so we fall back to a `resource_locks` table
# with (lock_type, lock_key, holder_id, acquired_at, heartbeat_at). Locks
# older than STALE_LOCK_TIMEOUT_SECONDS can be taken over, approximating the
# auto-release of a crashed Postgres session.
#
# =============================================================================

STALE_LOCK_TIMEOUT_SECONDS = int(os.getenv("STALE_LOCK_TIMEOUT_SECONDS", "3600"))


def _ensure_resource_locks_table(conn: "Connection") -> None:
    conn.execute(
        text("""
            CREATE TABLE IF NOT EXISTS resource_locks (
                lock_type TEXT NOT NULL,
                lock_key TEXT NOT NULL,
                holder_id TEXT NOT NULL,
                acquired_at TIMESTAMP NOT NULL,
                heartbeat_at TIMESTAMP NOT NULL,
                PRIMARY KEY (lock_type, lock_key)
            )
        """)
    )
    conn.commit()


def _acquire_lock_sqlite(conn: "Connection", lock_type: str, lock_key: str, holder_id: str) -> bool:
    now = utc_now()
    stale_threshold = now - timedelta(seconds=STALE_LOCK_TIMEOUT_SECONDS)

    _ensure_resource_locks_table(conn)

    # Insert a new lock row or take over a stale one. RETURNING only yields a
    # row when we actually inserted/updated.
    result = conn.execute(
        text("""
            INSERT INTO resource_locks (lock_type, lock_key, holder_id, acquired_at, heartbeat_at)
            VALUES (:lock_type, :lock_key, :holder_id, :now, :now)
            ON CONFLICT (lock_type, lock_key) DO UPDATE SET
                holder_id = :holder_id,
                acquired_at = :now,
                heartbeat_at = :now
            WHERE resource_locks.holder_id = :holder_id
               OR resource_locks.heartbeat_at < :stale_threshold
            RETURNING lock_type
        """),
        {
            "lock_type": lock_type,
            "lock_key": lock_key,
            "holder_id": holder_id,
            "now": now,
            "stale_threshold": stale_threshold,
        },
    )
    acquired = result.fetchone() is not None
    conn.commit()
    return acquired


def _release_lock_sqlite(conn: "Connection", lock_type: str, lock_key: str, holder_id: str) -> bool:
    result = conn.execute(
        text("""
            DELETE FROM resource_locks
            WHERE lock_type = :lock_type
              AND lock_key = :lock_key
              AND holder_id = :holder_id
        """),
        {"lock_type": lock_type, "lock_key": lock_key, "holder_id": holder_id},
    )
    conn.commit()
    return result.rowcount > 0


def try_advisory_lock(conn: "Connection", keyspace: int, key: int, holder_id: str) -> bool:
    """Try to take the advisory lock ``(keyspace, key)`` without blocking.

    Args:
        conn: Dedicated connection; on Postgres the lock lives as long as this
            connection's session (or until released).
        keyspace: Feature-specific namespace (32-bit int)
        key: Resource id within the keyspace (32-bit int)
        holder_id: Identifier for this lock holder (used by SQLite)

    Returns:
        True if the lock was acquired, False if another holder has it.
    """
    if is_sqlite_bind(conn):
        acquired = _acquire_lock_sqlite(conn, str(keyspace), str(key), holder_id)
    else:
        acquired = bool(
            conn.execute(
                text("SELECT pg_try_advisory_lock(:keyspace, :key)"),
                {"keyspace": int(keyspace), "key": int(key)},
            ).scalar()
        )
        conn.commit()

    if acquired:
        logger.debug("Acquired advisory lock %s/%s (holder=%s)", keyspace, key, holder_id)
    else:
        logger.debug("Advisory lock %s/%s is held by another session", keyspace, key)
    return acquired


def release_advisory_lock(conn: "Connection", keyspace: int, key: int, holder_id: str) -> bool:
    """Release an advisory lock taken with :func:`try_advisory_lock`."""
    if is_sqlite_bind(conn):
        released = _release_lock_sqlite(conn, str(keyspace), str(key), holder_id)
    else:
        released = bool(
            conn.execute(
                text("SELECT pg_advisory_unlock(:keyspace, :key)"),
                {"keyspace": int(keyspace), "key": int(key)},
            ).scalar()
        )
        conn.commit()

    if not released:
        logger.warning("Advisory lock %s/%s was not held by %s", keyspace, key, holder_id)
    return released


@contextmanager
def advisory_lock(conn: "Connection", keyspace: int, key: int) -> Generator[bool, None, None]:
    """Context manager for non-blocking advisory locking.

    Usage:
        with engine.connect() as conn, advisory_lock(conn, KEYSPACE, target.id) as acquired:
            if not acquired:
                return

    Yields:
        bool: True if lock was acquired
    """
    holder = generate_holder_id()
    acquired = try_advisory_lock(conn, keyspace, key, holder)
    try:
        yield acquired
    finally:
        if acquired:
            release_advisory_lock(conn, keyspace, key, holder)
