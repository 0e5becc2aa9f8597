"""Increase (banking API) connectors.

Webhooks arrive as event envelopes whose ``data`` holds the resource;
backfill pages return bare resources. Both shapes funnel through
:meth:`IncreaseReplicator._resource_and_event`.
"""

from __future__ import annotations

from siphon.replicators.auth import HmacSha256Verifier
from siphon.replicators.base import Replicator
from siphon.replicators.base import timestamp_guard
from siphon.replicators.column import DECIMAL
from siphon.replicators.column import INTEGER
from siphon.replicators.column import TEXT
from siphon.replicators.column import TIMESTAMP
from siphon.replicators.column import Column
from siphon.replicators.column import parse_datetime
from siphon.replicators.descriptor import Descriptor
from siphon.replicators.errors import BackfillFetchError
from siphon.replicators.state_machine import StateMachineStep


PRODUCTION_API_URL = "https://api.increase.com"
SANDBOX_API_URL = "https://sandbox.increase.com"
DOCS_URL = "https://increase.com/documentation/api"


class IncreaseSignatureVerifier(HmacSha256Verifier):
    """Accepts either a bare hex digest or the ``t=...,v1=<hex>`` form."""

    def __init__(self):
        super().__init__("Increase-Webhook-Signature")

    def signature_from_header(self, value: str) -> str:
        for part in value.split(","):
            name, _, sig = part.strip().partition("=")
            if name == "v1" and sig:
                return sig
        return value.strip()


class IncreaseReplicator(Replicator):
    """Shared behavior for every Increase resource type."""

    verifier = IncreaseSignatureVerifier()

    # Increase's ``type`` discriminator for this connector's resource
    resource_type: str = ""
    # Path of the list endpoint under the API root
    list_path: str = ""
    page_size = 100

    def _remote_key_column(self) -> Column:
        return Column("increase_id", TEXT, data_key="id")

    def _resource_and_event(self, body, request):
        if not isinstance(body, dict):
            return None, None
        if body.get("type") == self.resource_type:
            return body, None
        data = body.get("data")
        if isinstance(data, dict) and data.get("type") == self.resource_type:
            return data, body
        return None, None

    def _fetch_backfill_page(self, pagination_token, *, last_backfilled=None):
        sint = self.service_integration
        params = {"limit": self.page_size}
        if pagination_token:
            params["cursor"] = pagination_token
        resp = self.http_client.get(
            f"{sint.api_url}/{self.list_path}",
            params=params,
            headers={"Authorization": f"Bearer {sint.backfill_key}"},
        )
        if resp.status_code >= 500:
            raise BackfillFetchError(f"Increase returned {resp.status_code} for {self.list_path}")
        resp.raise_for_status()
        body = resp.json()
        return body.get("data", []), body.get("next_cursor") or None

    def process_state_change(self, field: str, value: str) -> None:
        if field == "api_url":
            value = normalize_api_url(value)
        super().process_state_change(field, value)

    def calculate_create_state_machine(self) -> StateMachineStep:
        sint = self.service_integration
        step = StateMachineStep()
        if not sint.webhook_secret:
            return (
                step.secret_prompt("Paste the webhook secret shown in your Increase dashboard:")
                .webhook_secret(sint)
                .with_output(
                    f"Add a webhook endpoint in Increase pointing at:\n\n  {self.webhook_endpoint}\n\n"
                    "Increase signs each delivery with the secret it shows you."
                )
            )
        return step.completed().with_output(
            f"Increase will now send {self.descriptor().plural_name} to this endpoint.\n\n{self.query_help_output()}"
        )

    def calculate_backfill_state_machine(self) -> StateMachineStep:
        sint = self.service_integration
        step = StateMachineStep()
        if not sint.backfill_key:
            return step.secret_prompt("Paste your Increase API key:").backfill_key(sint).with_output(
                f"Create an API key in the Increase dashboard. See {DOCS_URL}"
            )
        if not sint.api_url:
            return step.prompting("Is this a 'production' or 'sandbox' key?").api_url(sint)
        return step.completed().with_output(
            f"We are backfilling your {self.descriptor().plural_name}.\n\n{self.query_help_output()}"
        )


def event_time(value, *, event=None, **_):
    """When the row last changed: the event envelope's time, else the resource's."""
    if event is not None and event.get("created_at"):
        return parse_datetime(event["created_at"])
    return parse_datetime(value)


def normalize_api_url(value: str) -> str:
    """Map free-text environment names to the Increase base URL."""
    cleaned = (value or "").strip().lower()
    if cleaned in ("", "production", "prod", "live"):
        return PRODUCTION_API_URL
    if cleaned in ("sandbox", "test"):
        return SANDBOX_API_URL
    return (value or "").strip().rstrip("/")


class IncreaseAccountV1(IncreaseReplicator):
    resource_type = "account"
    list_path = "accounts"

    @classmethod
    def descriptor(cls) -> Descriptor:
        return Descriptor(
            name="increase_account_v1",
            ctor=cls,
            resource_name_singular="Increase Account",
            supports_webhooks=True,
            supports_backfill=True,
            api_docs_url=DOCS_URL,
            feature_roles=("beta",),
        )

    def _denormalized_columns(self) -> list[Column]:
        return [
            Column("balance", INTEGER, optional=True, index=True),
            Column("created_at", TIMESTAMP, defaulter="now", index=True),
            Column("entity_id", TEXT, optional=True, index=True),
            Column("interest_accrued", DECIMAL, optional=True),
            Column("name", TEXT, optional=True),
            Column("status", TEXT, optional=True),
            Column("updated_at", TIMESTAMP, data_key="created_at", converter=event_time, defaulter="now", index=True),
        ]

    def _timestamp_column_name(self) -> str | None:
        return "updated_at"

    def _update_where_expr(self, table, excluded):
        return timestamp_guard(table, excluded, "updated_at")


class IncreaseAccountNumberV1(IncreaseReplicator):
    resource_type = "account_number"
    list_path = "account_numbers"
    # First-seen time of the row; later deliveries never move it.
    coalesce_on_update_columns = ("row_created_at",)

    @classmethod
    def descriptor(cls) -> Descriptor:
        return Descriptor(
            name="increase_account_number_v1",
            ctor=cls,
            resource_name_singular="Increase Account Number",
            supports_webhooks=True,
            supports_backfill=True,
            api_docs_url=DOCS_URL,
            feature_roles=("beta",),
        )

    def _denormalized_columns(self) -> list[Column]:
        return [
            Column("account_id", TEXT, optional=True, index=True),
            Column("account_number", TEXT, optional=True, index=True),
            Column("name", TEXT, optional=True),
            Column("routing_number", TEXT, optional=True, index=True),
            Column("row_created_at", TIMESTAMP, data_key="created_at", event_key="created_at", optional=True, defaulter="now", index=True),
            Column("row_updated_at", TIMESTAMP, data_key="created_at", converter=event_time, optional=True, defaulter="now", index=True),
            Column("status", TEXT, optional=True),
        ]

    def _timestamp_column_name(self) -> str | None:
        return "row_updated_at"

    def _update_where_expr(self, table, excluded):
        return timestamp_guard(table, excluded, "row_updated_at")


class IncreaseWireTransferV1(IncreaseReplicator):
    resource_type = "wire_transfer"
    list_path = "wire_transfers"

    @classmethod
    def descriptor(cls) -> Descriptor:
        return Descriptor(
            name="increase_wire_transfer_v1",
            ctor=cls,
            resource_name_singular="Increase Wire Transfer",
            supports_webhooks=True,
            supports_backfill=True,
            api_docs_url=DOCS_URL,
        )

    def _denormalized_columns(self) -> list[Column]:
        return [
            Column("account_number", TEXT, optional=True, index=True),
            Column("account_id", TEXT, optional=True, index=True),
            Column("amount", INTEGER, optional=True, index=True),
            Column("approved_at", TIMESTAMP, data_key=["approval", "approved_at"], optional=True),
            Column("created_at", TIMESTAMP, optional=True, index=True),
            Column("routing_number", TEXT, optional=True, index=True),
            Column("status", TEXT, optional=True),
            Column("template_id", TEXT, optional=True),
            Column("transaction_id", TEXT, optional=True, index=True),
            Column("updated_at", TIMESTAMP, data_key="created_at", converter=event_time, defaulter="now", optional=True, index=True),
        ]

    def _timestamp_column_name(self) -> str | None:
        return "updated_at"

    def _update_where_expr(self, table, excluded):
        return timestamp_guard(table, excluded, "updated_at")


INCREASE_REPLICATORS = (IncreaseAccountV1, IncreaseAccountNumberV1, IncreaseWireTransferV1)
