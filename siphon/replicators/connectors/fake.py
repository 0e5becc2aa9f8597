"""In-process connectors used by tests and local demos.

They talk to whatever ``api_url`` the integration points at, so tests drive
backfill through an ``httpx.MockTransport``.
"""

from __future__ import annotations

from siphon.replicators.auth import HeaderSecretVerifier
from siphon.replicators.base import Replicator
from siphon.replicators.base import timestamp_guard
from siphon.replicators.column import INTEGER
from siphon.replicators.column import TEXT
from siphon.replicators.column import TIMESTAMP
from siphon.replicators.column import Column
from siphon.replicators.descriptor import Descriptor
from siphon.replicators.errors import BackfillFetchError
from siphon.replicators.state_machine import StateMachineStep


class FakeV1(Replicator):
    verifier = HeaderSecretVerifier("Fake-Secret")

    @classmethod
    def descriptor(cls) -> Descriptor:
        return Descriptor(
            name="fake_v1",
            ctor=cls,
            resource_name_singular="Fake",
            supports_webhooks=True,
            supports_backfill=True,
        )

    def _remote_key_column(self) -> Column:
        return Column("my_id", TEXT)

    def _denormalized_columns(self) -> list[Column]:
        return [Column("at", TIMESTAMP, optional=True, index=True)]

    def _timestamp_column_name(self) -> str | None:
        return "at"

    def _fetch_backfill_page(self, pagination_token, *, last_backfilled=None):
        params = {"token": pagination_token} if pagination_token else {}
        resp = self.http_client.get(f"{self.service_integration.api_url}/items", params=params)
        if resp.status_code >= 500:
            raise BackfillFetchError(f"fake API returned {resp.status_code}")
        resp.raise_for_status()
        body = resp.json()
        return body["items"], body.get("next") or None

    def calculate_create_state_machine(self) -> StateMachineStep:
        sint = self.service_integration
        step = StateMachineStep()
        if not sint.webhook_secret:
            return step.secret_prompt("Enter the webhook secret your Fake account sends:").webhook_secret(sint)
        return step.completed().with_output(
            f"Fake webhooks are now replicated. Send them to {self.webhook_endpoint}\n\n{self.query_help_output()}"
        )

    def calculate_backfill_state_machine(self) -> StateMachineStep:
        sint = self.service_integration
        step = StateMachineStep()
        if not sint.backfill_secret:
            return step.secret_prompt("Enter your Fake API secret:").backfill_secret(sint)
        if not sint.api_url:
            return step.prompting("Enter the Fake API base URL:").api_url(sint)
        return step.completed().with_output("Backfill is now running.")


class FakeGuardedV1(FakeV1):
    """Remote key ``id``; ``created_at`` must move forward for a row to change."""

    @classmethod
    def descriptor(cls) -> Descriptor:
        return Descriptor(
            name="fake_guarded_v1",
            ctor=cls,
            resource_name_singular="Fake Guarded",
            supports_webhooks=True,
            supports_backfill=True,
        )

    def _remote_key_column(self) -> Column:
        return Column("id", TEXT)

    def _denormalized_columns(self) -> list[Column]:
        return [
            Column("amount", INTEGER, optional=True),
            Column("created_at", TIMESTAMP, optional=True, index=True),
        ]

    def _timestamp_column_name(self) -> str | None:
        return "created_at"

    def _update_where_expr(self, table, excluded):
        return timestamp_guard(table, excluded, "created_at")


class FakeDependentV1(FakeV1):
    """Depends on a :class:`FakeV1` integration and records its upserts."""

    @classmethod
    def descriptor(cls) -> Descriptor:
        return Descriptor(
            name="fake_dependent_v1",
            ctor=cls,
            resource_name_singular="Fake Dependent",
            supports_webhooks=True,
            dependency_descriptor=FakeV1.descriptor(),
        )

    def on_dependency_webhook_upsert(self, replicator, payload, changed):
        self.upsert_webhook({"my_id": f"dep-{payload['my_id']}", "at": None})


FAKE_REPLICATORS = (FakeV1, FakeGuardedV1, FakeDependentV1)


def register_fake_replicators(registry) -> None:
    for cls in FAKE_REPLICATORS:
        registry.register_class(cls)
