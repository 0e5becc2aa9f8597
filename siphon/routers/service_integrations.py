"""Service integration onboarding: create, transition, backfill.

Each endpoint returns the next state machine step; clients keep posting the
requested field to ``post_to_url`` until ``complete`` is true.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from sqlalchemy.orm import Session

from siphon.crud import crud_integrations
from siphon.crud import crud_organizations
from siphon.database import get_db
from siphon.jobs.builtin import enqueue_backfill
from siphon.replicators.base import STATE_FIELDS
from siphon.replicators.errors import DependencyMissing
from siphon.replicators.errors import InvalidPrecondition
from siphon.replicators.errors import InvalidService
from siphon.schemas import ServiceIntegrationCreate
from siphon.schemas import StateMachineStepOut
from siphon.schemas import TransitionIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/service_integrations", tags=["service_integrations"])

# Fields collected by the backfill flow; everything else belongs to the create flow
BACKFILL_FIELDS = frozenset({"backfill_key", "backfill_secret", "api_url"})


def _get_integration_or_404(db: Session, opaque_id: str):
    sint = crud_integrations.get_integration(db, opaque_id)
    if sint is None:
        raise HTTPException(status_code=404, detail="There is no service integration with that identifier.")
    return sint


def _backfill_step(db: Session, sint) -> StateMachineStepOut:
    step = sint.calculate_backfill_state_machine(db)
    if step.complete:
        enqueue_backfill(sint.id)
    return StateMachineStepOut(**step.to_dict())


@router.post("/create", response_model=StateMachineStepOut)
def create_service_integration(payload: ServiceIntegrationCreate, db: Session = Depends(get_db)):
    org = crud_organizations.get_organization_by_key(db, payload.organization_key)
    if org is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    try:
        sint = crud_integrations.create_integration(
            db,
            organization=org,
            service_name=payload.service_name,
            table_name=payload.table_name,
        )
    except InvalidService as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except (DependencyMissing, InvalidPrecondition) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    logger.info("service_integration_created", extra=sint.log_tags)
    step = sint.calculate_create_state_machine(db)
    return StateMachineStepOut(**step.to_dict())


@router.post("/{opaque_id}/transition/{field}", response_model=StateMachineStepOut)
def transition_service_integration(opaque_id: str, field: str, payload: TransitionIn, db: Session = Depends(get_db)):
    sint = _get_integration_or_404(db, opaque_id)
    if field not in STATE_FIELDS:
        raise HTTPException(status_code=400, detail=f"'{field}' is not a valid field")
    try:
        sint.process_state_change(db, field, payload.value)
    except InvalidPrecondition as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if field in BACKFILL_FIELDS:
        return _backfill_step(db, sint)
    step = sint.calculate_create_state_machine(db)
    return StateMachineStepOut(**step.to_dict())


@router.post("/{opaque_id}/backfill", response_model=StateMachineStepOut)
def backfill_service_integration(opaque_id: str, db: Session = Depends(get_db)):
    sint = _get_integration_or_404(db, opaque_id)
    if not sint.replicator(db).descriptor().supports_backfill:
        raise HTTPException(status_code=400, detail=f"{sint.service_name} does not support backfill")
    return _backfill_step(db, sint)
