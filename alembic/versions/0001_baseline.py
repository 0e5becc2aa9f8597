"""Baseline schema: platform tables.

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Mirror tables are owned by the replicators and never appear in migrations.
``resource_locks`` is created on demand by the SQLite advisory-lock fallback.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_baseline"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _tz():
    return sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("minimum_sync_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", _tz(), server_default=sa.func.now()),
    )
    op.create_index("ix_organizations_id", "organizations", ["id"])
    op.create_index("ix_organizations_key", "organizations", ["key"], unique=True)

    op.create_table(
        "service_integrations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("opaque_id", sa.String(), nullable=False, unique=True),
        sa.Column("service_name", sa.String(), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("api_url", sa.String(), nullable=False),
        sa.Column("webhook_secret", sa.String(), nullable=False),
        sa.Column("backfill_key", sa.String(), nullable=False),
        sa.Column("backfill_secret", sa.String(), nullable=False),
        sa.Column("table_name", sa.String(), nullable=False),
        sa.Column("depends_on_id", sa.Integer(), sa.ForeignKey("service_integrations.id"), nullable=True),
        sa.Column("last_backfilled_at", _tz(), nullable=True),
        sa.Column("created_at", _tz(), server_default=sa.func.now()),
        sa.Column("updated_at", _tz(), server_default=sa.func.now()),
        sa.Column("soft_deleted_at", _tz(), nullable=True),
        sa.UniqueConstraint("table_name", name="unique_mirror_table_name"),
    )
    op.create_index("ix_service_integrations_id", "service_integrations", ["id"])
    op.create_index("ix_service_integrations_organization_id", "service_integrations", ["organization_id"])
    op.create_index("ix_service_integrations_depends_on_id", "service_integrations", ["depends_on_id"])

    op.create_table(
        "sync_targets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("opaque_id", sa.String(), nullable=False, unique=True),
        sa.Column(
            "service_integration_id", sa.Integer(), sa.ForeignKey("service_integrations.id"), nullable=False
        ),
        sa.Column("connection_url", sa.String(), nullable=False),
        sa.Column("schema", sa.String(), nullable=False),
        sa.Column("table", sa.String(), nullable=False),
        sa.Column("period_seconds", sa.Integer(), nullable=False),
        sa.Column("last_synced_at", _tz(), nullable=True),
        sa.Column("created_at", _tz(), server_default=sa.func.now()),
    )
    op.create_index("ix_sync_targets_id", "sync_targets", ["id"])
    op.create_index("ix_sync_targets_service_integration_id", "sync_targets", ["service_integration_id"])

    op.create_table(
        "webhook_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("opaque_id", sa.String(), nullable=False, unique=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column(
            "service_integration_id", sa.Integer(), sa.ForeignKey("service_integrations.id"), nullable=True
        ),
        sa.Column("deliver_to_url", sa.String(), nullable=False),
        sa.Column("webhook_secret", sa.String(), nullable=False),
        sa.Column("deactivated_at", _tz(), nullable=True),
        sa.Column("created_at", _tz(), server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_subscriptions_id", "webhook_subscriptions", ["id"])
    op.create_index("ix_webhook_subscriptions_organization_id", "webhook_subscriptions", ["organization_id"])
    op.create_index(
        "ix_webhook_subscriptions_service_integration_id", "webhook_subscriptions", ["service_integration_id"]
    )

    op.create_table(
        "webhook_subscription_deliveries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "webhook_subscription_id", sa.Integer(), sa.ForeignKey("webhook_subscriptions.id"), nullable=False
        ),
        sa.Column("payload", _json(), nullable=False),
        sa.Column("attempt_timestamps", _json(), nullable=False),
        sa.Column("attempt_http_response_statuses", _json(), nullable=False),
        sa.Column("created_at", _tz(), server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_subscription_deliveries_id", "webhook_subscription_deliveries", ["id"])
    op.create_index(
        "ix_webhook_subscription_deliveries_webhook_subscription_id",
        "webhook_subscription_deliveries",
        ["webhook_subscription_id"],
    )

    op.create_table(
        "logged_webhooks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("service_integration_opaque_id", sa.String(), nullable=False),
        sa.Column("request_method", sa.String(), nullable=False),
        sa.Column("request_path", sa.String(), nullable=False),
        sa.Column("request_headers", _json(), nullable=False),
        sa.Column("request_body", sa.Text(), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False),
        sa.Column("inserted_at", _tz(), server_default=sa.func.now(), nullable=False),
        sa.Column("truncated_at", _tz(), nullable=True),
    )
    op.create_index("ix_logged_webhooks_id", "logged_webhooks", ["id"])
    op.create_index("ix_logged_webhooks_organization_id", "logged_webhooks", ["organization_id"])
    op.create_index(
        "ix_logged_webhooks_service_integration_opaque_id", "logged_webhooks", ["service_integration_opaque_id"]
    )
    op.create_index("ix_logged_webhooks_inserted_at", "logged_webhooks", ["inserted_at"])

    op.create_table(
        "idempotencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(), nullable=False, unique=True),
        sa.Column("last_run", _tz(), nullable=True),
        sa.Column("stored_result", _json(), nullable=True),
        sa.Column("created_at", _tz(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", _tz(), nullable=True),
    )


def downgrade() -> None:
    for table in (
        "idempotencies",
        "logged_webhooks",
        "webhook_subscription_deliveries",
        "webhook_subscriptions",
        "sync_targets",
        "service_integrations",
        "organizations",
    ):
        op.drop_table(table)
