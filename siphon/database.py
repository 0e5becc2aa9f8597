import logging
from contextlib import contextmanager
from typing import Any
from typing import Iterator

from sqlalchemy import JSON
from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from siphon.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

# Create Base class
Base = declarative_base()


def json_type():
    """JSON on SQLite, JSONB on Postgres (JSONB supports equality for the "data changed" guard).

    Each column gets its own instance so type-level extensions on one column
    never apply to another.
    """
    return JSON().with_variant(JSONB(), "postgresql")


def _strip_quotes(value: str) -> str:
    value = (value or "").strip()
    # Some environments / Makefile exporters include surrounding quotes from `.env`
    if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
        value = value[1:-1].strip()
    return value


def normalize_db_url(db_url: str) -> str:
    """Strip quotes and rewrite bare Postgres URLs to the psycopg 3 driver."""
    db_url = _strip_quotes(db_url)
    # Common footgun: many platforms emit `postgres://...` but SQLAlchemy expects `postgresql://...`.
    # Without an explicit driver SQLAlchemy picks psycopg2, which we do not ship.
    for bare in ("postgres://", "postgresql://"):
        if db_url.startswith(bare):
            db_url = "postgresql+psycopg://" + db_url[len(bare) :]
            break
    return db_url


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    Postgres is the production database. SQLite is accepted for tests and
    lite deployments; advisory locks and row locks degrade to the
    ``resource_locks`` table and SQLite's single-writer semantics there.

    Args:
        db_url: Database connection URL
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    db_url = normalize_db_url(db_url)
    if not db_url:
        raise ValueError("DATABASE_URL is not set (empty)")

    try:
        parsed = make_url(db_url)
    except Exception as e:  # pragma: no cover - depends on SQLAlchemy parsing
        raise ValueError(f"Invalid DATABASE_URL: {e}") from e

    if parsed.drivername.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False, "timeout": 30})
        engine = create_engine(db_url, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        return engine

    if not parsed.drivername.startswith("postgresql"):
        raise ValueError(
            f"Unsupported DATABASE_URL driver '{parsed.drivername}'. "
            "Use Postgres (postgresql+psycopg://...) or SQLite for tests."
        )

    # Connection pool health: pre_ping verifies connections before use,
    # pool_recycle closes connections after 5 minutes to handle DB restarts
    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_recycle", 300)

    return create_engine(db_url, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps attributes accessible after a commit so
    integration objects handed to replicators stay usable across the
    engine's own commits.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


# Default engine and sessionmaker instances for app usage.
# Tests build their own engines and pass session factories explicitly.
if _settings.database_url:
    default_engine = make_engine(_settings.database_url)
    default_session_factory = make_sessionmaker(default_engine)
else:
    logger.warning("DATABASE_URL not set - using placeholder (will be overridden by tests)")
    default_engine = None  # type: ignore[assignment]
    default_session_factory = None  # type: ignore[assignment]


def get_session_factory() -> sessionmaker:
    """Get the default session factory for the application."""
    if default_session_factory is not None:
        return default_session_factory

    # Fallback for edge cases where module loaded before DATABASE_URL set
    db_url = get_settings().database_url
    if not db_url:
        raise ValueError("DATABASE_URL not set in environment")

    logger.warning("get_session_factory() creating engine on-demand (default_session_factory was None)")
    return make_sessionmaker(make_engine(db_url))


def get_db(session_factory: Any = None) -> Iterator[Session]:
    """Dependency provider for database sessions.

    Args:
        session_factory: Optional custom session factory

    Yields:
        SQLAlchemy Session object
    """
    factory = session_factory or get_session_factory()
    db = factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session(session_factory: Any = None):
    """Database session context manager for services and background jobs.

    1. Auto-commit on success
    2. Auto-rollback on error
    3. Always close session

    Usage:
        with db_session() as db:
            integration = crud.get_integration(db, opaque_id)

    Args:
        session_factory: Optional custom session factory

    Yields:
        SQLAlchemy Session object with automatic lifecycle management
    """
    factory = session_factory or get_session_factory()
    session = factory()

    try:
        yield session
        session.commit()  # Auto-commit on success

    except Exception as e:
        session.rollback()  # Auto-rollback on error
        logger.error("Database session rolled back due to error: %s", e)
        raise  # Re-raise the original exception

    finally:
        session.close()  # Always close


def initialize_database(engine: Engine = None) -> None:
    """Initialize platform tables using the given engine.

    Mirror tables are not part of ``Base.metadata``; replicators create them
    on demand.

    Args:
        engine: Optional engine to use, defaults to default_engine
    """
    # Import all models to ensure they are registered with Base
    import siphon.models  # noqa: F401

    target_engine = engine or default_engine
    Base.metadata.create_all(bind=target_engine)
