"""Replicator registry, descriptors, and small shared helpers."""

import logging
from datetime import date
from datetime import datetime
from datetime import timezone
from decimal import Decimal

import pytest

from siphon.config import get_settings
from siphon.main import StructuredFormatter
from siphon.replicators.connectors import BUILTIN_REPLICATORS
from siphon.replicators.connectors import register_builtin_replicators
from siphon.replicators.connectors.fake import FakeDependentV1
from siphon.replicators.connectors.fake import FakeGuardedV1
from siphon.replicators.connectors.fake import FakeV1
from siphon.replicators.descriptor import Descriptor
from siphon.replicators.errors import InvalidService
from siphon.replicators.registry import ReplicatorRegistry
from siphon.utils.ids import new_opaque_id
from siphon.utils.serialization import to_jsonable


class TestReplicatorRegistry:
    def test_register_and_lookup(self):
        registry = ReplicatorRegistry()
        registry.register_class(FakeV1)
        assert "fake_v1" in registry
        assert registry.get("fake_v1").ctor is FakeV1

    def test_unknown_name(self):
        with pytest.raises(InvalidService):
            ReplicatorRegistry().get("nope")

    def test_re_registering_same_class_is_allowed(self):
        registry = ReplicatorRegistry()
        registry.register_class(FakeV1)
        registry.register_class(FakeV1)
        assert [d.name for d in registry.all()] == ["fake_v1"]

    def test_name_collision_rejected(self):
        registry = ReplicatorRegistry()
        registry.register_class(FakeV1)
        clash = Descriptor(name="fake_v1", ctor=FakeGuardedV1, resource_name_singular="Clash")
        with pytest.raises(KeyError):
            registry.register(clash)

    def test_builtins(self):
        registry = register_builtin_replicators(ReplicatorRegistry())
        names = [d.name for d in registry.all()]
        assert names == sorted(cls.descriptor().name for cls in BUILTIN_REPLICATORS)
        assert "increase_account_v1" in names

    def test_create_replicator(self, db, make_integration):
        registry = ReplicatorRegistry()
        registry.register_class(FakeGuardedV1)
        sint = make_integration("fake_guarded_v1")
        rep = sint.replicator(db, registry=registry)
        assert isinstance(rep, FakeGuardedV1)
        assert rep.table_name == sint.table_name

    def test_dependents_resolve_from_the_parents_registry(self, db, make_integration):
        seen = []

        class RecordingDependent(FakeDependentV1):
            def on_dependency_webhook_upsert(self, replicator, payload, changed):
                seen.append((payload["my_id"], self.registry))

        registry = ReplicatorRegistry()
        registry.register_class(FakeV1)
        registry.register_class(RecordingDependent)

        parent_sint = make_integration("fake_v1")
        make_integration("fake_dependent_v1", depends_on_id=parent_sint.id)
        parent = parent_sint.replicator(db, registry=registry)
        parent.create_table()

        assert parent.registry is registry
        parent.upsert_webhook({"my_id": "p1"})
        assert seen == [("p1", registry)]


def test_descriptor_names():
    d = Descriptor(name="x_v1", ctor=object, resource_name_singular="Account")
    assert d.plural_name == "Accounts"
    assert Descriptor(name="y", ctor=object, resource_name_singular="Entry", resource_name_plural="Entries").plural_name == "Entries"
    assert d.default_table_name == "x_v1"


def test_to_jsonable():
    value = {
        "at": datetime(2024, 1, 1, 12, 0),
        "day": date(2024, 1, 2),
        "whole": Decimal("10"),
        "part": Decimal("1.5"),
        "nested": [{"at": datetime(2024, 1, 1, tzinfo=timezone.utc)}],
    }
    assert to_jsonable(value) == {
        "at": "2024-01-01T12:00:00+00:00",
        "day": "2024-01-02",
        "whole": 10,
        "part": 1.5,
        "nested": [{"at": "2024-01-01T00:00:00+00:00"}],
    }


def test_opaque_ids_are_prefixed_and_unique():
    a, b = new_opaque_id("svi"), new_opaque_id("svi")
    assert a.startswith("svi_")
    assert a != b


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("BACKFILL_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("API_URL", "https://siphon.example.com/")
    settings = get_settings()
    assert settings.testing is True
    assert settings.scheduler_enabled is False
    assert settings.backfill_max_attempts == 7
    assert settings.api_url == "https://siphon.example.com"


def test_structured_formatter_appends_extra_fields():
    record = logging.LogRecord("siphon", logging.INFO, __file__, 1, "backfill_completed", None, None)
    record.service_integration_id = 4
    record.items = 250
    line = StructuredFormatter().format(record)
    assert "INFO backfill_completed" in line
    assert "service_integration_id=4" in line
    assert "items=250" in line
