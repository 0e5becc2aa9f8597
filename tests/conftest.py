"""Shared fixtures: one file-backed SQLite database per test."""

import os

os.environ["TESTING"] = "1"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import itertools  # noqa: E402

import pytest  # noqa: E402

from siphon.crud.crud_organizations import create_organization  # noqa: E402
from siphon.database import initialize_database  # noqa: E402
from siphon.database import make_engine  # noqa: E402
from siphon.database import make_sessionmaker  # noqa: E402
from siphon.events import event_bus  # noqa: E402
from siphon.jobs.registry import job_registry  # noqa: E402
from siphon.models import ServiceIntegration  # noqa: E402
from siphon.replicators.connectors import register_builtin_replicators  # noqa: E402
from siphon.replicators.connectors.fake import register_fake_replicators  # noqa: E402
from siphon.replicators.registry import replicator_registry  # noqa: E402

register_builtin_replicators(replicator_registry)
register_fake_replicators(replicator_registry)

_table_counter = itertools.count(1)


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'siphon.db'}")
    initialize_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def org(db):
    return create_organization(db, key="acme", name="Acme")


@pytest.fixture
def make_integration(db, org):
    """Insert a ServiceIntegration directly (no events, no table creation)."""

    def _make(service_name="fake_v1", **attrs):
        attrs.setdefault("table_name", f"{service_name}_{next(_table_counter)}")
        attrs.setdefault("organization_id", org.id)
        sint = ServiceIntegration(service_name=service_name, **attrs)
        db.add(sint)
        db.commit()
        db.refresh(sint)
        return sint

    return _make


@pytest.fixture(autouse=True)
def _isolated_global_state():
    """Event subscriptions and job wiring made by a test never leak into the next."""
    saved = {k: list(v) for k, v in event_bus._subscribers.items()}
    event_bus._subscribers.clear()
    yield
    event_bus._subscribers.clear()
    event_bus._subscribers.update(saved)
    job_registry.session_factory = None
    job_registry.detach_scheduler()
