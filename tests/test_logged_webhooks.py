"""Inbound webhook log and retention."""

from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from siphon.logged_webhooks import log_webhook
from siphon.logged_webhooks import trim
from siphon.logged_webhooks import truncate_logs
from siphon.models import LoggedWebhook
from siphon.replicators.auth import WebhookRequest

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def add_log(db, org):
    def _add(label, *, days_old, status=202, owned=True):
        row = LoggedWebhook(
            organization_id=org.id if owned else None,
            service_integration_opaque_id=label,
            request_headers={"x-label": label},
            request_body=f'{{"label": "{label}"}}',
            response_status=status,
            inserted_at=NOW - timedelta(days=days_old),
        )
        db.add(row)
        db.commit()
        return row

    return _add


def test_log_webhook_redacts_credentials(db, org):
    request = WebhookRequest(
        path="/v1/service_integrations/svi_1",
        headers={"Authorization": "Bearer abc", "Cookie": "s=1", "Content-Type": "application/json"},
        body=b'{"id": 1}',
    )
    logged = log_webhook(db, opaque_id="svi_1", request=request, response_status=202, organization_id=org.id)

    db.refresh(logged)
    assert logged.request_headers == {
        "authorization": "***",
        "cookie": "***",
        "content-type": "application/json",
    }
    assert logged.request_body == '{"id": 1}'
    assert logged.response_status == 202
    assert not logged.truncated


def test_trim_applies_retention_policy(db, add_log):
    add_log("unowned-old", days_old=15, owned=False)
    add_log("unowned-new", days_old=13, owned=False)
    add_log("ok-fresh", days_old=6)
    add_log("ok-week", days_old=8)
    add_log("ok-ancient", days_old=91)
    add_log("fail-fresh", days_old=29, status=500)
    add_log("fail-month", days_old=31, status=401)
    add_log("fail-ancient", days_old=91, status=400)

    counts = trim(db, NOW)

    assert counts == {"deleted_unowned": 1, "deleted_successes": 1, "deleted_failures": 1, "truncated": 2}
    remaining = {row.service_integration_opaque_id: row for row in db.query(LoggedWebhook).all()}
    assert sorted(remaining) == ["fail-fresh", "fail-month", "ok-fresh", "ok-week", "unowned-new"]

    for label in ("ok-week", "fail-month"):
        db.refresh(remaining[label])
        assert remaining[label].truncated
        assert remaining[label].request_body == ""
        assert remaining[label].request_headers == {}
    for label in ("ok-fresh", "fail-fresh", "unowned-new"):
        db.refresh(remaining[label])
        assert not remaining[label].truncated
        assert remaining[label].request_body


def test_trim_is_repeatable(db, add_log):
    add_log("ok-week", days_old=8)
    assert trim(db, NOW)["truncated"] == 1
    assert trim(db, NOW)["truncated"] == 0


def test_truncate_logs_ignores_empty(db):
    assert truncate_logs(db, []) == 0
