"""Onboarding protocol: one step at a time, one field value at a time.

A connector inspects its integration's configuration and returns the next
:class:`StateMachineStep`. The caller (HTTP API or CLI) shows ``prompt``,
collects a value, and posts it to ``post_to_url``; the transition endpoint
feeds it into ``process_state_change`` and asks for the next step.
"""

from __future__ import annotations

from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from typing import Any


@dataclass
class StateMachineStep:
    needs_input: bool = False
    complete: bool = False
    prompt: str = ""
    prompt_is_secret: bool = False
    post_to_url: str = ""
    post_params: dict[str, Any] = field(default_factory=dict)
    # Name of the request body key the collected value is posted under
    post_params_value_key: str = "value"
    output: str = ""
    error_code: str = ""

    # ------------------------------------------------------------------
    # Fluent helpers
    # ------------------------------------------------------------------

    def prompting(self, prompt: str) -> "StateMachineStep":
        self.needs_input = True
        self.complete = False
        self.prompt = prompt
        self.prompt_is_secret = False
        return self

    def secret_prompt(self, prompt: str) -> "StateMachineStep":
        self.prompting(prompt)
        self.prompt_is_secret = True
        return self

    def transition_field(self, integration, field_name: str) -> "StateMachineStep":
        """Point ``post_to_url`` at the transition endpoint for *field_name*."""
        self.post_to_url = f"/v1/service_integrations/{integration.opaque_id}/transition/{field_name}"
        return self

    def webhook_secret(self, integration) -> "StateMachineStep":
        return self.transition_field(integration, "webhook_secret")

    def api_url(self, integration) -> "StateMachineStep":
        return self.transition_field(integration, "api_url")

    def backfill_key(self, integration) -> "StateMachineStep":
        return self.transition_field(integration, "backfill_key")

    def backfill_secret(self, integration) -> "StateMachineStep":
        return self.transition_field(integration, "backfill_secret")

    def completed(self) -> "StateMachineStep":
        self.needs_input = False
        self.complete = True
        self.prompt = ""
        self.prompt_is_secret = False
        self.post_to_url = ""
        return self

    def with_output(self, output: str) -> "StateMachineStep":
        self.output = output
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
