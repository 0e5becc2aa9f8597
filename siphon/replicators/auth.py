"""Inbound webhook verification strategies.

Each connector carries one verifier instance. Verifiers only ever see the raw
body bytes, because signature schemes are whitespace-sensitive and must run
before anything re-serializes the payload.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Protocol


@dataclass
class WebhookRequest:
    """Transport-independent view of an inbound HTTP request."""

    method: str = "POST"
    path: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self):
        # Header names are case-insensitive; store them lowercased.
        self.headers = {k.lower(): v for k, v in (self.headers or {}).items()}
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        self._json: Any = None
        self._json_parsed = False

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        """Body parsed as JSON; ``None`` for empty or unparseable bodies."""
        if not self._json_parsed:
            self._json_parsed = True
            try:
                self._json = json.loads(self.body) if self.body else None
            except ValueError:
                self._json = None
        return self._json


class WebhookVerifier(Protocol):
    def verify(self, request: WebhookRequest, integration) -> bool: ...


class AlwaysVerified:
    """For connectors that never receive pushes (backfill-only APIs)."""

    def verify(self, request: WebhookRequest, integration) -> bool:
        return True


class HeaderSecretVerifier:
    """Compare a shared-secret header with the integration's ``webhook_secret``."""

    def __init__(self, header: str = "Siphon-Webhook-Secret"):
        self.header = header

    def verify(self, request: WebhookRequest, integration) -> bool:
        secret = integration.webhook_secret or ""
        if not secret:
            return False
        provided = request.header(self.header) or ""
        return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


class HmacSha256Verifier:
    """HMAC-SHA256 of the raw body, hex-encoded in a named header."""

    def __init__(self, header: str, prefix: str = ""):
        self.header = header
        self.prefix = prefix

    def signature_from_header(self, value: str) -> str:
        if self.prefix and value.startswith(self.prefix):
            return value[len(self.prefix) :]
        return value

    def verify(self, request: WebhookRequest, integration) -> bool:
        secret = integration.webhook_secret or ""
        header_value = request.header(self.header)
        if not secret or not header_value:
            return False
        signature = self.signature_from_header(header_value)
        expected = hmac.new(secret.encode("utf-8"), request.body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature.lower(), expected.lower())


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    """Signature helper for outbound deliveries and tests."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
