"""Webhook verification and the onboarding state machines."""

import hashlib
import hmac

import pytest

from siphon.replicators.auth import AlwaysVerified
from siphon.replicators.auth import HeaderSecretVerifier
from siphon.replicators.auth import HmacSha256Verifier
from siphon.replicators.auth import WebhookRequest
from siphon.replicators.auth import hmac_sha256_hex
from siphon.replicators.connectors.increase import PRODUCTION_API_URL
from siphon.replicators.connectors.increase import SANDBOX_API_URL
from siphon.replicators.connectors.increase import normalize_api_url
from siphon.replicators.errors import InvalidPrecondition
from siphon.replicators.state_machine import StateMachineStep


class _Sint:
    def __init__(self, webhook_secret=""):
        self.webhook_secret = webhook_secret


# ---------------------------------------------------------------------------
# Verifiers
# ---------------------------------------------------------------------------


def test_request_headers_are_case_insensitive():
    req = WebhookRequest(headers={"X-Thing": "1"}, body="{}")
    assert req.header("x-thing") == "1"
    assert req.header("X-THING") == "1"
    assert req.body == b"{}"


def test_request_json_tolerates_garbage():
    assert WebhookRequest(body=b"not json").json() is None
    assert WebhookRequest(body=b"").json() is None
    assert WebhookRequest(body=b'{"a": 1}').json() == {"a": 1}


def test_header_secret_verifier():
    verifier = HeaderSecretVerifier("Fake-Secret")
    sint = _Sint("s3cret")
    assert verifier.verify(WebhookRequest(headers={"Fake-Secret": "s3cret"}), sint)
    assert not verifier.verify(WebhookRequest(headers={"Fake-Secret": "nope"}), sint)
    assert not verifier.verify(WebhookRequest(), sint)


def test_header_secret_verifier_rejects_when_unconfigured():
    verifier = HeaderSecretVerifier("Fake-Secret")
    assert not verifier.verify(WebhookRequest(headers={"Fake-Secret": ""}), _Sint(""))


def test_hmac_verifier_checks_raw_body():
    body = b'{"id":  "a"}'
    sig = hmac.new(b"key", body, hashlib.sha256).hexdigest()
    verifier = HmacSha256Verifier("X-Sig", prefix="sha256=")
    sint = _Sint("key")

    assert verifier.verify(WebhookRequest(headers={"X-Sig": f"sha256={sig}"}, body=body), sint)
    assert verifier.verify(WebhookRequest(headers={"X-Sig": sig.upper()}, body=body), sint)
    # Re-serialized body no longer matches
    assert not verifier.verify(WebhookRequest(headers={"X-Sig": sig}, body=b'{"id": "a"}'), sint)
    assert not verifier.verify(WebhookRequest(body=body), sint)


def test_always_verified():
    assert AlwaysVerified().verify(WebhookRequest(), _Sint())


def test_webhook_response_for_replicator(db, make_integration):
    sint = make_integration("fake_v1", webhook_secret="abc")
    rep = sint.replicator(db)

    ok = rep.webhook_response(WebhookRequest(headers={"fake-secret": "abc"}))
    assert (ok.status, ok.body) == (202, '{"o":"k"}')
    assert rep.webhook_response(WebhookRequest(headers={"fake-secret": "abd"})).status == 401


def test_increase_signature_forms(db, make_integration):
    sint = make_integration("increase_account_v1", webhook_secret="whsec_1")
    rep = sint.replicator(db)
    body = b'{"type":"event"}'
    sig = hmac_sha256_hex("whsec_1", body)

    headers = {"Increase-Webhook-Signature": f"t=1700000000,v1={sig}"}
    assert rep.webhook_response(WebhookRequest(headers=headers, body=body)).status == 202
    headers = {"Increase-Webhook-Signature": sig}
    assert rep.webhook_response(WebhookRequest(headers=headers, body=body)).status == 202
    headers = {"Increase-Webhook-Signature": "v1=deadbeef"}
    assert rep.webhook_response(WebhookRequest(headers=headers, body=body)).status == 401


# ---------------------------------------------------------------------------
# State machines
# ---------------------------------------------------------------------------


def test_step_helpers():
    sint = type("S", (), {"opaque_id": "svi_x"})()
    step = StateMachineStep().secret_prompt("Secret?").webhook_secret(sint)
    assert step.needs_input and step.prompt_is_secret and not step.complete
    assert step.post_to_url == "/v1/service_integrations/svi_x/transition/webhook_secret"

    done = step.completed().with_output("all set")
    assert done.complete and not done.needs_input
    assert done.post_to_url == ""
    assert done.to_dict()["output"] == "all set"


def test_fake_create_flow(db, make_integration):
    sint = make_integration("fake_v1")

    step = sint.calculate_create_state_machine(db)
    assert step.needs_input and step.prompt_is_secret
    assert step.post_to_url.endswith(f"/{sint.opaque_id}/transition/webhook_secret")

    sint.process_state_change(db, "webhook_secret", "shh")
    step = sint.calculate_create_state_machine(db)
    assert step.complete
    assert sint.opaque_id in step.output
    assert sint.table_name in step.output


def test_fake_backfill_flow(db, make_integration):
    sint = make_integration("fake_v1")

    step = sint.calculate_backfill_state_machine(db)
    assert step.post_to_url.endswith("/transition/backfill_secret")
    sint.process_state_change(db, "backfill_secret", "k")

    step = sint.calculate_backfill_state_machine(db)
    assert step.post_to_url.endswith("/transition/api_url")
    assert not step.prompt_is_secret
    sint.process_state_change(db, "api_url", "https://fake.test")

    assert sint.calculate_backfill_state_machine(db).complete
    db.refresh(sint)
    assert (sint.backfill_secret, sint.api_url) == ("k", "https://fake.test")


def test_unknown_state_field_rejected(db, make_integration):
    sint = make_integration("fake_v1")
    with pytest.raises(InvalidPrecondition):
        sint.process_state_change(db, "table_name", "hijack")
    db.refresh(sint)
    assert sint.table_name != "hijack"


def test_increase_backfill_flow_normalizes_environment(db, make_integration):
    sint = make_integration("increase_account_v1")
    step = sint.calculate_backfill_state_machine(db)
    assert step.post_to_url.endswith("/transition/backfill_key")
    sint.process_state_change(db, "backfill_key", "key")
    assert sint.calculate_backfill_state_machine(db).post_to_url.endswith("/transition/api_url")

    sint.process_state_change(db, "api_url", "Sandbox")
    assert sint.api_url == SANDBOX_API_URL
    assert sint.calculate_backfill_state_machine(db).complete


@pytest.mark.parametrize(
    "value,expected",
    [
        ("production", PRODUCTION_API_URL),
        ("", PRODUCTION_API_URL),
        (" test ", SANDBOX_API_URL),
        ("https://proxy.example.com/", "https://proxy.example.com"),
    ],
)
def test_normalize_api_url(value, expected):
    assert normalize_api_url(value) == expected
