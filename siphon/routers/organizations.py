"""Organization-scoped resources: sync targets and webhook subscriptions."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from sqlalchemy.orm import Session

from siphon.crud import crud_integrations
from siphon.crud import crud_organizations
from siphon.crud import crud_subscriptions
from siphon.database import get_db
from siphon.replicators.state_machine import StateMachineStep
from siphon.schemas import SyncTargetCreate
from siphon.schemas import SyncTargetList
from siphon.schemas import SyncTargetOut
from siphon.schemas import WebhookSubscriptionCreate
from siphon.schemas import WebhookSubscriptionOut
from siphon.sync_targets import KIND_DB
from siphon.sync_targets import KIND_HTTP
from siphon.sync_targets import InvalidConnectionUrl
from siphon.sync_targets import InvalidSyncPeriod
from siphon.sync_targets import create_sync_target
from siphon.sync_targets import displaysafe_url
from siphon.sync_targets import period_bounds

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organizations/{org_key}", tags=["organizations"])

KIND_LABELS = {KIND_DB: "database", KIND_HTTP: "http"}


def _get_org_or_404(db: Session, org_key: str):
    org = crud_organizations.get_organization_by_key(db, org_key)
    if org is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


def _check_kind(kind: str) -> str:
    if kind not in KIND_LABELS:
        raise HTTPException(status_code=404, detail=f"Unknown sync target kind '{kind}'")
    return kind


def _integration_for_org(db: Session, org, identifier: str | None):
    if not identifier:
        raise HTTPException(
            status_code=400,
            detail="service_integration_identifier: at least one parameter must be provided",
        )
    sint = crud_integrations.get_integration(db, identifier)
    if sint is None:
        raise HTTPException(status_code=403, detail="There is no service integration with that identifier.")
    if sint.organization_id != org.id:
        raise HTTPException(status_code=403, detail="You don't have permissions with that organization.")
    return sint


def _prompt_for(org_key: str, kind: str, key: str, prompt: str) -> HTTPException:
    step = StateMachineStep().prompting(prompt)
    step.post_to_url = f"/v1/organizations/{org_key}/sync_targets/{kind}/create"
    step.post_params_value_key = key
    return HTTPException(status_code=422, detail={"state_machine_step": step.to_dict()})


def _sync_target_out(target) -> SyncTargetOut:
    return SyncTargetOut(
        opaque_id=target.opaque_id,
        service_integration_opaque_id=target.service_integration.opaque_id,
        connection_url=displaysafe_url(target.connection_url),
        schema_name=target.schema,
        table=target.table,
        period_seconds=target.period_seconds,
        last_synced_at=target.last_synced_at,
    )


@router.get("/sync_targets/{kind}", response_model=SyncTargetList)
def list_sync_targets(org_key: str, kind: str, db: Session = Depends(get_db)):
    org = _get_org_or_404(db, org_key)
    _check_kind(kind)
    targets = crud_subscriptions.get_sync_targets(db, organization_id=org.id, kind=kind)
    message = "" if targets else f"Organization {org.name} has no {KIND_LABELS[kind]} sync targets set up."
    return SyncTargetList(items=[_sync_target_out(t) for t in targets], message=message)


@router.post("/sync_targets/{kind}/create", response_model=SyncTargetOut)
def create_org_sync_target(org_key: str, kind: str, payload: SyncTargetCreate, db: Session = Depends(get_db)):
    org = _get_org_or_404(db, org_key)
    _check_kind(kind)
    sint = _integration_for_org(db, org, payload.service_integration_identifier)

    if not payload.connection_url:
        raise _prompt_for(org_key, kind, "connection_url", f"Enter the {KIND_LABELS[kind]} URL to sync to:")
    if payload.period_seconds is None:
        minimum, maximum = period_bounds(org)
        raise _prompt_for(
            org_key, kind, "period_seconds", f"How many seconds between syncs ({minimum} to {maximum})?"
        )

    try:
        target = create_sync_target(
            db,
            sint,
            connection_url=payload.connection_url,
            period_seconds=payload.period_seconds,
            schema=payload.schema_name,
            table=payload.table,
            kind=kind,
        )
    except (InvalidConnectionUrl, InvalidSyncPeriod) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _sync_target_out(target)


@router.post("/webhook_subscriptions/create", response_model=WebhookSubscriptionOut)
def create_org_webhook_subscription(org_key: str, payload: WebhookSubscriptionCreate, db: Session = Depends(get_db)):
    org = _get_org_or_404(db, org_key)
    sint = None
    if payload.service_integration_identifier:
        sint = _integration_for_org(db, org, payload.service_integration_identifier)
    if not payload.url.startswith(("https://", "http://")):
        raise HTTPException(status_code=400, detail="url must be an http(s) URL")

    sub = crud_subscriptions.create_webhook_subscription(
        db,
        organization_id=org.id,
        deliver_to_url=payload.url,
        webhook_secret=payload.webhook_secret,
        service_integration_id=sint.id if sint is not None else None,
    )
    logger.info("webhook_subscription_created id=%s", sub.id)
    return WebhookSubscriptionOut(
        opaque_id=sub.opaque_id,
        deliver_to_url=sub.deliver_to_url,
        service_integration_opaque_id=sint.opaque_id if sint is not None else None,
        deactivated_at=sub.deactivated_at,
    )
