"""CRUD operations for Service Integrations."""

import re
from typing import List
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from siphon.database import Base
from siphon.events import EventType
from siphon.events import event_bus
from siphon.models import Organization
from siphon.models import ServiceIntegration
from siphon.replicators.errors import DependencyMissing
from siphon.replicators.errors import InvalidPrecondition
from siphon.replicators.registry import ReplicatorRegistry
from siphon.replicators.registry import replicator_registry

TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

# Tables the platform itself owns in the shared database, beyond the ORM models
RESERVED_TABLE_NAMES = frozenset({"resource_locks", "alembic_version"})


def get_integration(db: Session, opaque_id: str) -> Optional[ServiceIntegration]:
    return (
        db.query(ServiceIntegration)
        .filter(ServiceIntegration.opaque_id == opaque_id, ServiceIntegration.soft_deleted_at.is_(None))
        .first()
    )


def get_integrations(db: Session, *, organization_id: int, service_name: Optional[str] = None) -> List[ServiceIntegration]:
    q = db.query(ServiceIntegration).filter(
        ServiceIntegration.organization_id == organization_id,
        ServiceIntegration.soft_deleted_at.is_(None),
    )
    if service_name is not None:
        q = q.filter(ServiceIntegration.service_name == service_name)
    return q.order_by(ServiceIntegration.id).all()


def _taken_table_names(db: Session) -> set:
    """Every name a new mirror table must avoid.

    Mirror tables of all organizations share the platform database, so this
    spans every integration (soft-deleted ones keep their table) plus the
    platform's own tables.
    """
    taken = {name.lower() for (name,) in db.query(ServiceIntegration.table_name)}
    taken.update(name.lower() for name in Base.metadata.tables)
    taken.update(RESERVED_TABLE_NAMES)
    return taken


def _unique_table_name(db: Session, base: str) -> str:
    taken = _taken_table_names(db)
    if base.lower() not in taken:
        return base
    suffix = 2
    while f"{base}_{suffix}".lower() in taken:
        suffix += 1
    return f"{base}_{suffix}"


def create_integration(
    db: Session,
    *,
    organization: Organization,
    service_name: str,
    table_name: Optional[str] = None,
    registry: Optional[ReplicatorRegistry] = None,
) -> ServiceIntegration:
    """Create an integration for a registered connector.

    Raises:
        InvalidService: no connector with that name
        DependencyMissing: the connector depends on another integration the org lacks
        InvalidPrecondition: the table name is invalid or already taken
    """
    descriptor = (registry or replicator_registry).get(service_name)

    depends_on = None
    if descriptor.dependency_descriptor is not None:
        candidates = get_integrations(db, organization_id=organization.id, service_name=descriptor.dependency_descriptor.name)
        if not candidates:
            raise DependencyMissing(
                f"You need to set up a {descriptor.dependency_descriptor.resource_name_singular} integration "
                f"before a {descriptor.resource_name_singular} integration."
            )
        depends_on = candidates[0]

    if table_name:
        if not TABLE_NAME_RE.match(table_name):
            raise InvalidPrecondition(f"'{table_name}' is not a valid table name")
        if table_name.lower() in _taken_table_names(db):
            raise InvalidPrecondition(f"The table '{table_name}' is already in use")
    else:
        table_name = _unique_table_name(db, descriptor.default_table_name)

    sint = ServiceIntegration(
        organization_id=organization.id,
        service_name=service_name,
        table_name=table_name,
        depends_on_id=depends_on.id if depends_on is not None else None,
    )
    db.add(sint)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race for the same table name
        db.rollback()
        raise InvalidPrecondition(f"The table '{table_name}' is already in use") from None
    db.refresh(sint)
    event_bus.publish(EventType.INTEGRATION_CREATED, {"service_integration_id": sint.id})
    return sint
