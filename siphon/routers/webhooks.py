"""Inbound webhook endpoint.

Authentication is connector-specific and runs against the raw body bytes
before anything parses them. Every request is written to the webhook log.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Request
from fastapi import Response
from sqlalchemy.orm import Session

from siphon.crud import crud_integrations
from siphon.database import get_db
from siphon.logged_webhooks import log_webhook
from siphon.replicators.auth import WebhookRequest
from siphon.replicators.errors import ColumnValueMissing
from siphon.replicators.errors import InvalidPayload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/service_integrations/{opaque_id}")
async def receive_webhook(opaque_id: str, request: Request, db: Session = Depends(get_db)):
    wreq = WebhookRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        body=await request.body(),
    )

    sint = crud_integrations.get_integration(db, opaque_id)
    if sint is None:
        log_webhook(db, opaque_id=opaque_id, request=wreq, response_status=404)
        return Response(content='{"message":"No integration with that identifier"}', status_code=404, media_type="application/json")

    replicator = sint.replicator(db)
    resp = replicator.webhook_response(wreq)
    status = resp.status
    body = resp.body
    if status < 300:
        try:
            replicator.upsert_webhook_request(wreq)
        except (InvalidPayload, ColumnValueMissing) as e:
            logger.warning("webhook_payload_invalid: %s", e, extra=sint.log_tags)
            status = 400
            body = '{"message":"invalid payload"}'

    log_webhook(db, opaque_id=opaque_id, request=wreq, response_status=status, organization_id=sint.organization_id)
    return Response(content=body, status_code=status, headers=resp.headers)
