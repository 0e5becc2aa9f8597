"""CRUD operations for Organizations."""

from typing import Optional

from sqlalchemy.orm import Session

from siphon.models import Organization


def create_organization(
    db: Session,
    *,
    key: str,
    name: str = "",
    minimum_sync_seconds: Optional[int] = None,
) -> Organization:
    org = Organization(key=key, name=name or key, minimum_sync_seconds=minimum_sync_seconds)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def get_organization_by_key(db: Session, key: str) -> Optional[Organization]:
    return db.query(Organization).filter(Organization.key == key).first()
