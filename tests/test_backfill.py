"""Backfill pagination, bounded retry, and bookkeeping."""

from unittest.mock import patch

import httpx
import pytest

from siphon.events import EventType
from siphon.events import event_bus
from siphon.replicators.errors import BackfillFetchError
from siphon.replicators.errors import CredentialsMissing


def _pages_handler(pages, calls, failures=None):
    """Serve ``pages[token]`` as ``{"items", "next"}``; ``failures[token]`` 503s that many times first."""
    failures = dict(failures or {})

    def handler(request: httpx.Request) -> httpx.Response:
        token = request.url.params.get("token") or None
        calls.append(token)
        if failures.get(token, 0) > 0:
            failures[token] -= 1
            return httpx.Response(503, json={"error": "try later"})
        items, next_token = pages[token]
        return httpx.Response(200, json={"items": items, "next": next_token})

    return handler


@pytest.fixture
def fake_integration(make_integration):
    return make_integration("fake_v1", backfill_secret="s3cret", api_url="https://fake.test")


def _replicator(db, sint, handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    rep = sint.replicator(db, http_client=client)
    rep.create_table(if_not_exists=True)
    return rep


def test_backfill_walks_every_page(db, fake_integration):
    calls = []
    pages = {
        None: ([{"my_id": "a"}, {"my_id": "b"}], "p2"),
        "p2": ([{"my_id": "c", "at": "2024-01-01T00:00:00Z"}], None),
    }
    rep = _replicator(db, fake_integration, _pages_handler(pages, calls))

    assert rep.backfill() == 3
    assert calls == [None, "p2"]
    assert sorted(r["my_id"] for r in rep.readonly_rows()) == ["a", "b", "c"]


def test_backfill_records_completion(db, fake_integration):
    completed = []
    event_bus.subscribe(EventType.BACKFILL_COMPLETED, completed.append)
    rep = _replicator(db, fake_integration, _pages_handler({None: ([{"my_id": "a"}], None)}, []))

    assert fake_integration.last_backfilled_at is None
    rep.backfill()

    db.refresh(fake_integration)
    assert fake_integration.last_backfilled_at is not None
    assert completed == [{"service_integration_id": fake_integration.id, "items": 1}]


def test_backfill_requires_credentials(db, make_integration):
    sint = make_integration("fake_v1", api_url="https://fake.test")
    with pytest.raises(CredentialsMissing):
        sint.replicator(db).backfill()


def test_transient_failures_below_limit_are_retried(db, fake_integration, monkeypatch):
    monkeypatch.setenv("BACKFILL_MAX_ATTEMPTS", "3")
    calls = []
    handler = _pages_handler({None: ([{"my_id": "a"}], None)}, calls, failures={None: 2})
    rep = _replicator(db, fake_integration, handler)

    with patch.object(rep, "wait_for_retry_attempt") as wait:
        assert rep.backfill() == 1

    assert len(calls) == 3
    assert [c.args[0] for c in wait.call_args_list] == [1, 2]
    assert [r["my_id"] for r in rep.readonly_rows()] == ["a"]


def test_persistent_failure_gives_up_after_max_attempts(db, fake_integration, monkeypatch):
    monkeypatch.setenv("BACKFILL_MAX_ATTEMPTS", "3")
    calls = []
    pages = {None: ([{"my_id": "a"}], "p2"), "p2": ([{"my_id": "b"}], None)}
    handler = _pages_handler(pages, calls, failures={"p2": 100})
    rep = _replicator(db, fake_integration, handler)

    with patch.object(rep, "wait_for_retry_attempt") as wait:
        with pytest.raises(BackfillFetchError):
            rep.backfill()

    assert calls == [None, "p2", "p2", "p2"]
    assert wait.call_count == 2
    # The first page stays imported
    assert [r["my_id"] for r in rep.readonly_rows()] == ["a"]
    db.refresh(fake_integration)
    assert fake_integration.last_backfilled_at is None


def test_single_attempt_when_max_is_one(db, fake_integration, monkeypatch):
    monkeypatch.setenv("BACKFILL_MAX_ATTEMPTS", "1")
    calls = []
    rep = _replicator(db, fake_integration, _pages_handler({}, calls, failures={None: 5}))

    with patch.object(rep, "wait_for_retry_attempt") as wait:
        with pytest.raises(BackfillFetchError):
            rep.backfill()

    assert len(calls) == 1
    wait.assert_not_called()


def test_invalid_items_are_skipped(db, fake_integration):
    pages = {None: ([{"my_id": "a"}, {"my_id": None}, {"my_id": "c"}], None)}
    rep = _replicator(db, fake_integration, _pages_handler(pages, []))

    assert rep.backfill() == 3
    assert sorted(r["my_id"] for r in rep.readonly_rows()) == ["a", "c"]


def test_increase_backfill_sends_key_and_cursor(db, make_integration):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        cursor = request.url.params.get("cursor")
        if cursor is None:
            return httpx.Response(
                200,
                json={"data": [{"type": "account", "id": "acc_1", "balance": 1}], "next_cursor": "c2"},
            )
        return httpx.Response(200, json={"data": [{"type": "account", "id": "acc_2", "balance": 2}], "next_cursor": None})

    sint = make_integration(
        "increase_account_v1",
        backfill_key="inc_key",
        api_url="https://sandbox.increase.com",
    )
    rep = _replicator(db, sint, handler)

    assert rep.backfill() == 2
    assert [r.url.path for r in seen] == ["/accounts", "/accounts"]
    assert seen[0].headers["authorization"] == "Bearer inc_key"
    assert seen[1].url.params["cursor"] == "c2"
    assert seen[0].url.params["limit"] == "100"
    assert sorted(r["increase_id"] for r in rep.readonly_rows()) == ["acc_1", "acc_2"]
