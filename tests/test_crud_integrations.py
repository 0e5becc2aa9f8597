"""Integration creation: table naming across organizations."""

import pytest

from siphon.crud.crud_integrations import create_integration
from siphon.crud.crud_organizations import create_organization
from siphon.replicators.errors import InvalidPrecondition


@pytest.fixture
def other_org(db):
    return create_organization(db, key="globex", name="Globex")


def test_second_org_gets_its_own_mirror_table(db, org, other_org):
    mine = create_integration(db, organization=org, service_name="fake_v1")
    theirs = create_integration(db, organization=other_org, service_name="fake_v1")
    assert mine.table_name == "fake_v1"
    assert theirs.table_name == "fake_v1_2"

    mine_rep = mine.replicator(db)
    theirs_rep = theirs.replicator(db)
    mine_rep.create_table(if_not_exists=True)
    theirs_rep.create_table(if_not_exists=True)

    theirs_rep.upsert_webhook({"my_id": "secret-of-globex"})

    assert mine_rep.readonly_rows() == []
    assert [r["my_id"] for r in theirs_rep.readonly_rows()] == ["secret-of-globex"]


def test_explicit_name_taken_by_another_org_is_rejected(db, org, other_org):
    create_integration(db, organization=org, service_name="fake_v1", table_name="payments")
    with pytest.raises(InvalidPrecondition, match="already in use"):
        create_integration(db, organization=other_org, service_name="fake_v1", table_name="payments")


@pytest.mark.parametrize(
    "name",
    ["service_integrations", "idempotencies", "logged_webhooks", "resource_locks", "alembic_version", "Organizations"],
)
def test_platform_table_names_are_rejected(db, org, name):
    with pytest.raises(InvalidPrecondition, match="already in use"):
        create_integration(db, organization=org, service_name="fake_v1", table_name=name)


def test_soft_deleted_integration_keeps_its_table_name(db, org):
    old = create_integration(db, organization=org, service_name="fake_v1", table_name="t1")
    old.soft_delete()
    db.commit()

    with pytest.raises(InvalidPrecondition, match="already in use"):
        create_integration(db, organization=org, service_name="fake_v1", table_name="t1")

    fresh = create_integration(db, organization=org, service_name="fake_v1")
    assert fresh.table_name == "fake_v1"


def test_default_name_skips_soft_deleted_names(db, org):
    old = create_integration(db, organization=org, service_name="fake_v1")
    old.soft_delete()
    db.commit()

    assert create_integration(db, organization=org, service_name="fake_v1").table_name == "fake_v1_2"
