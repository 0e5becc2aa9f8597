"""Built-in connectors."""

from siphon.replicators.connectors.increase import INCREASE_REPLICATORS
from siphon.replicators.registry import ReplicatorRegistry
from siphon.replicators.registry import replicator_registry

BUILTIN_REPLICATORS = (*INCREASE_REPLICATORS,)


def register_builtin_replicators(registry: ReplicatorRegistry | None = None) -> ReplicatorRegistry:
    """Register every built-in connector; safe to call more than once."""
    registry = registry or replicator_registry
    for cls in BUILTIN_REPLICATORS:
        registry.register_class(cls)
    return registry
