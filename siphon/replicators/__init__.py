"""Connector abstraction and the replication engine."""

from siphon.replicators.auth import WebhookRequest
from siphon.replicators.base import Replicator
from siphon.replicators.base import WebhookResponse
from siphon.replicators.column import Column
from siphon.replicators.descriptor import Descriptor
from siphon.replicators.registry import ReplicatorRegistry
from siphon.replicators.registry import replicator_registry
from siphon.replicators.state_machine import StateMachineStep

__all__ = [
    "Column",
    "Descriptor",
    "Replicator",
    "ReplicatorRegistry",
    "StateMachineStep",
    "WebhookRequest",
    "WebhookResponse",
    "replicator_registry",
]
