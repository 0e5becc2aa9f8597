"""Replicator engine shared by every connector.

A connector subclasses :class:`Replicator` and supplies a descriptor, a remote
key column, denormalized columns, a verifier, state machines, and (for
backfill) a page fetcher. Everything else lives here: mirror table creation,
webhook authentication, conflict-resolving upserts, the bounded-retry backfill
loop, and fan-out of row changes.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Iterator

import httpx
import sqlalchemy as sa
from sqlalchemy import Engine
from sqlalchemy.orm import Session
from sqlalchemy.schema import CreateIndex
from sqlalchemy.schema import CreateTable

from siphon.config import get_settings
from siphon.database import json_type
from siphon.database import make_engine
from siphon.db_utils import dialect_insert
from siphon.events import EventType
from siphon.events import event_bus
from siphon.models.service_integration import ServiceIntegration
from siphon.replicators.auth import HeaderSecretVerifier
from siphon.replicators.auth import WebhookRequest
from siphon.replicators.column import Column
from siphon.replicators.descriptor import Descriptor
from siphon.replicators.errors import BackfillFetchError
from siphon.replicators.errors import CredentialsMissing
from siphon.replicators.errors import InvalidPayload
from siphon.replicators.errors import InvalidPrecondition
from siphon.replicators.state_machine import StateMachineStep
from siphon.utils.serialization import to_jsonable
from siphon.utils.time import ensure_utc
from siphon.utils.time import utc_now

logger = logging.getLogger(__name__)

PK_COLUMN = "pk"
DATA_COLUMN = "data"

# Configuration fields the onboarding protocol may set
STATE_FIELDS = frozenset({"webhook_secret", "api_url", "backfill_key", "backfill_secret"})

_readonly_engines: dict[str, Engine] = {}


@dataclass
class WebhookResponse:
    status: int
    headers: dict[str, str] = field(default_factory=lambda: {"Content-Type": "application/json"})
    body: str = ""

    @classmethod
    def ok(cls) -> "WebhookResponse":
        return cls(202, body='{"o":"k"}')

    @classmethod
    def unauthorized(cls) -> "WebhookResponse":
        return cls(401, body='{"message":"invalid webhook signature"}')


# ---------------------------------------------------------------------------
# Update guards and update expressions
# ---------------------------------------------------------------------------


def timestamp_guard(table: sa.Table, excluded, column_name: str):
    """Only overwrite when the incoming value is strictly newer.

    Equal timestamps do not overwrite. A stored NULL is always replaced.
    """
    stored = table.c[column_name]
    return sa.or_(stored.is_(None), stored < excluded[column_name])


def data_changed_guard(table: sa.Table, excluded):
    """Only overwrite when the raw payload differs from what is stored."""
    return table.c[DATA_COLUMN] != excluded[DATA_COLUMN]


def coalesce_excluded_on_update(update: dict, table: sa.Table, excluded, column_names) -> dict:
    """Keep the stored value for *column_names* once set (insert-only columns)."""
    for name in column_names:
        update[name] = sa.func.coalesce(table.c[name], excluded[name])
    return update


class Replicator:
    """Base class for connectors; one instance per integration per unit of work."""

    verifier = HeaderSecretVerifier()

    # Errors raised by ``_fetch_backfill_page`` that are worth retrying
    retryable_backfill_errors: tuple[type[BaseException], ...] = (BackfillFetchError, httpx.HTTPError)
    # Seconds of backoff per attempt number
    backfill_retry_backoff_secs: float = 1.0

    # Columns only ever written on insert
    coalesce_on_update_columns: tuple[str, ...] = ()

    def __init__(
        self,
        service_integration: ServiceIntegration,
        db: Session,
        *,
        http_client: httpx.Client | None = None,
        bus=None,
        registry=None,
    ):
        self.service_integration = service_integration
        self.db = db
        self.bus = bus or event_bus
        # Registry this replicator was resolved from; dependents resolve from the same one
        self.registry = registry
        self._http_client = http_client
        self._owns_http_client = False
        self._table: sa.Table | None = None

    @classmethod
    def descriptor(cls) -> Descriptor:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.service_integration.opaque_id}>"

    # ------------------------------------------------------------------
    # Connector hooks
    # ------------------------------------------------------------------

    def _remote_key_column(self) -> Column:
        raise NotImplementedError

    def _denormalized_columns(self) -> list[Column]:
        return []

    def _timestamp_column_name(self) -> str | None:
        """Column that moves forward whenever a row changes (used by sync targets)."""
        return None

    def _update_where_expr(self, table: sa.Table, excluded):
        """Predicate that must hold for a conflicting row to be overwritten.

        ``None`` means always overwrite.
        """
        return None

    def _resource_and_event(self, body: Any, request: WebhookRequest | None) -> tuple[dict | None, dict | None]:
        """Split a payload into ``(resource, event envelope)``.

        Returning ``(None, None)`` means the payload is not for this connector
        and is skipped.
        """
        return body, None

    def _fetch_enrichment(self, resource: dict, event: dict | None, request: WebhookRequest | None) -> Any:
        return None

    def _fetch_backfill_page(self, pagination_token: str | None, *, last_backfilled=None) -> tuple[list, str | None]:
        raise NotImplementedError(f"{type(self).__name__} does not support backfill")

    def calculate_create_state_machine(self) -> StateMachineStep:
        raise NotImplementedError

    def calculate_backfill_state_machine(self) -> StateMachineStep:
        raise NotImplementedError

    def on_dependency_webhook_upsert(self, replicator: "Replicator", payload: dict, changed: bool) -> None:
        """Called on dependents when the integration they depend on upserts a row."""

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @property
    def admin_engine(self) -> Engine:
        return self.db.get_bind()

    def readonly_engine(self) -> Engine:
        """Engine for consumers of the mirror tables (falls back to the admin engine)."""
        url = get_settings().readonly_database_url
        if not url:
            return self.admin_engine
        engine = _readonly_engines.get(url)
        if engine is None:
            engine = _readonly_engines[url] = make_engine(url)
        return engine

    @contextmanager
    def admin_connection(self) -> Iterator[sa.Connection]:
        with self.admin_engine.begin() as conn:
            yield conn

    @contextmanager
    def readonly_connection(self) -> Iterator[sa.Connection]:
        with self.readonly_engine().connect() as conn:
            yield conn

    @property
    def http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=get_settings().http_timeout_secs)
            self._owns_http_client = True
        return self._http_client

    def close(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None
            self._owns_http_client = False

    # ------------------------------------------------------------------
    # Mirror table
    # ------------------------------------------------------------------

    @property
    def table_name(self) -> str:
        return self.service_integration.table_name

    def storable_columns(self) -> list[Column]:
        return [self._remote_key_column(), *self._denormalized_columns()]

    def build_table(self, name: str, metadata: sa.MetaData, *, with_indexes: bool = True) -> sa.Table:
        """Build the mirror table definition under *name* in *metadata*."""
        remote_key = self._remote_key_column()
        denormalized = self._denormalized_columns()
        table = sa.Table(
            name,
            metadata,
            sa.Column(PK_COLUMN, sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True),
            sa.Column(DATA_COLUMN, json_type(), nullable=False),
            remote_key.to_sqlalchemy(remote_key=True),
            *[c.to_sqlalchemy() for c in denormalized],
        )
        if with_indexes:
            for col in denormalized:
                if col.index:
                    sa.Index(f"{name}_{col.name}_idx", table.c[col.name])
        return table

    def table(self) -> sa.Table:
        """SQLAlchemy table for this integration's mirror (built once per instance)."""
        if self._table is None:
            self._table = self.build_table(self.table_name, sa.MetaData())
        return self._table

    def create_table_sql(self, dialect=None) -> str:
        """DDL for the mirror table and its indexes."""
        dialect = dialect or self.admin_engine.dialect
        table = self.table()
        statements = [str(CreateTable(table).compile(dialect=dialect)).strip()]
        for index in sorted(table.indexes, key=lambda i: i.name):
            statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip())
        return ";\n".join(statements) + ";"

    def create_table(self, if_not_exists: bool = False) -> None:
        """Create the mirror table and indexes.

        Without ``if_not_exists`` a second call fails because the table exists.
        """
        with self.admin_connection() as conn:
            self.table().create(conn, checkfirst=if_not_exists)
        logger.info("mirror_table_created", extra=self.service_integration.log_tags)

    def table_exists(self) -> bool:
        return sa.inspect(self.admin_engine).has_table(self.table_name)

    def readonly_rows(self, limit: int | None = None) -> list[dict]:
        table = self.table()
        stmt = sa.select(table).order_by(table.c[PK_COLUMN])
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.readonly_connection() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def webhook_response(self, request: WebhookRequest) -> WebhookResponse:
        """Authenticate an inbound request: 202 when verified, 401 otherwise."""
        if self.verifier.verify(request, self.service_integration):
            return WebhookResponse.ok()
        logger.info("webhook_verification_failed", extra=self.service_integration.log_tags)
        return WebhookResponse.unauthorized()

    @property
    def webhook_endpoint(self) -> str:
        return f"{get_settings().api_url}/v1/service_integrations/{self.service_integration.opaque_id}"

    def query_help_output(self) -> str:
        return (
            f"Your {self.descriptor().plural_name} are replicated into the '{self.table_name}' table.\n"
            f"Query it with: SELECT * FROM {self.table_name}"
        )

    def upsert_webhook_request(self, request: WebhookRequest) -> bool:
        """Upsert a verified inbound request."""
        body = request.json()
        if body is None:
            raise InvalidPayload("Webhook body is not JSON")
        return self.upsert_webhook(body, request=request)

    def upsert_webhook(self, body: Any, request: WebhookRequest | None = None) -> bool:
        """Upsert one payload; return True when the mirror row changed."""
        resource, event = self._resource_and_event(body, request)
        if resource is None:
            logger.info("webhook_payload_skipped", extra=self.service_integration.log_tags)
            return False
        enrichment = self._fetch_enrichment(resource, event, request)
        return self._upsert(resource, event, enrichment)

    def upsert_backfill_payload(self, item: Any) -> bool:
        return self.upsert_webhook(item)

    def _prepare_for_insert(self, resource: dict, event: dict | None, enrichment: Any) -> dict:
        remote_key = self._remote_key_column()
        inserting = {DATA_COLUMN: resource}
        key = remote_key.resolve(resource, event=event, enrichment=enrichment)
        if key is None:
            raise InvalidPayload(f"Remote key {remote_key.name!r} is null")
        inserting[remote_key.name] = key
        for col in self._denormalized_columns():
            inserting[col.name] = col.resolve(resource, event=event, enrichment=enrichment)
        return inserting

    def _upsert_update_expr(self, inserting: dict, table: sa.Table, excluded) -> dict:
        update = {name: excluded[name] for name in inserting}
        return coalesce_excluded_on_update(update, table, excluded, self.coalesce_on_update_columns)

    def _upsert(self, resource: dict, event: dict | None, enrichment: Any) -> bool:
        inserting = self._prepare_for_insert(resource, event, enrichment)
        table = self.table()
        remote_key = self._remote_key_column()

        stmt = dialect_insert(self.admin_engine, table).values(**inserting)
        stmt = stmt.on_conflict_do_update(
            index_elements=[remote_key.name],
            set_=self._upsert_update_expr(inserting, table, stmt.excluded),
            where=self._update_where_expr(table, stmt.excluded),
        ).returning(table.c[PK_COLUMN])

        with self.admin_connection() as conn:
            changed = conn.execute(stmt).first() is not None

        if not changed:
            logger.debug(
                "upsert_guard_rejected",
                extra={**self.service_integration.log_tags, "remote_key": inserting[remote_key.name]},
            )
            return False

        self._notify_dependents(inserting)
        self._publish_row_upsert(inserting)
        return True

    def dependents(self) -> list[ServiceIntegration]:
        sint = self.service_integration
        return (
            self.db.query(ServiceIntegration)
            .filter(ServiceIntegration.depends_on_id == sint.id, ServiceIntegration.soft_deleted_at.is_(None))
            .all()
        )

    def _notify_dependents(self, inserting: dict) -> None:
        for dependent in self.dependents():
            rep = dependent.replicator(self.db, registry=self.registry, bus=self.bus)
            rep.on_dependency_webhook_upsert(self, inserting, changed=True)

    def _publish_row_upsert(self, inserting: dict) -> None:
        sint = self.service_integration
        self.bus.publish(
            EventType.ROW_UPSERT,
            {
                "service_integration_id": sint.id,
                "service_name": sint.service_name,
                "table_name": sint.table_name,
                "row": to_jsonable(inserting),
            },
        )

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    @property
    def max_backfill_retry_attempts(self) -> int:
        return get_settings().backfill_max_attempts

    def wait_for_retry_attempt(self, attempt: int) -> None:
        time.sleep(attempt * self.backfill_retry_backoff_secs)

    def backfill(self) -> int:
        """Import every page from the external API; return the number of items seen.

        Pages already upserted stay committed if a later page fails.
        """
        sint = self.service_integration
        if not sint.backfill_key and not sint.backfill_secret:
            raise CredentialsMissing(f"{sint.opaque_id} has no backfill key or secret")

        started_at = utc_now()
        last_backfilled = ensure_utc(sint.last_backfilled_at)
        token = None
        pages = 0
        items = 0
        try:
            while True:
                page, token = self._fetch_backfill_page_with_retry(token, last_backfilled=last_backfilled)
                pages += 1
                for item in page:
                    items += 1
                    try:
                        self.upsert_backfill_payload(item)
                    except InvalidPayload as e:
                        logger.warning("backfill_item_skipped: %s", e, extra=sint.log_tags)
                if not token:
                    break
        finally:
            self.close()

        sint.last_backfilled_at = started_at
        self.db.commit()
        logger.info("backfill_completed", extra={**sint.log_tags, "pages": pages, "items": items})
        self.bus.publish(EventType.BACKFILL_COMPLETED, {"service_integration_id": sint.id, "items": items})
        return items

    def _fetch_backfill_page_with_retry(self, pagination_token, *, last_backfilled=None):
        max_attempts = self.max_backfill_retry_attempts
        attempt = 1
        while True:
            try:
                return self._fetch_backfill_page(pagination_token, last_backfilled=last_backfilled)
            except self.retryable_backfill_errors as e:
                if attempt >= max_attempts:
                    logger.error(
                        "backfill_page_failed after %s attempts: %s",
                        attempt,
                        e,
                        extra=self.service_integration.log_tags,
                    )
                    raise
                logger.warning("backfill_page_retry attempt=%s: %s", attempt, e, extra=self.service_integration.log_tags)
                self.wait_for_retry_attempt(attempt)
                attempt += 1

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------

    def process_state_change(self, field: str, value: str) -> None:
        """Set one configuration field on the integration and commit it."""
        if field not in STATE_FIELDS:
            raise InvalidPrecondition(f"'{field}' is not a valid field for {self.descriptor().name}")
        sint = self.service_integration
        try:
            setattr(sint, field, value)
            self.db.add(sint)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("state_change field=%s", field, extra=sint.log_tags)
