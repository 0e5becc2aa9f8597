"""Name -> connector lookup.

The process-wide :data:`replicator_registry` starts empty; startup code calls
:func:`siphon.replicators.connectors.register_builtin_replicators` before any
integration is resolved.
"""

from __future__ import annotations

import logging

from siphon.replicators.descriptor import Descriptor
from siphon.replicators.errors import InvalidService

logger = logging.getLogger(__name__)


class ReplicatorRegistry:
    def __init__(self):
        self._descriptors: dict[str, Descriptor] = {}

    def register(self, descriptor: Descriptor) -> Descriptor:
        existing = self._descriptors.get(descriptor.name)
        if existing is not None and existing.ctor is not descriptor.ctor:
            raise KeyError(f"Replicator '{descriptor.name}' is already registered")
        self._descriptors[descriptor.name] = descriptor
        logger.debug("Registered replicator %s", descriptor.name)
        return descriptor

    def register_class(self, replicator_cls) -> Descriptor:
        return self.register(replicator_cls.descriptor())

    def get(self, name: str) -> Descriptor:
        try:
            return self._descriptors[name]
        except KeyError:
            raise InvalidService(f"No replicator named '{name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors

    def all(self) -> list[Descriptor]:
        return sorted(self._descriptors.values(), key=lambda d: d.name)

    def create_replicator(self, service_integration, db, **kwargs):
        descriptor = self.get(service_integration.service_name)
        kwargs.setdefault("registry", self)
        return descriptor.ctor(service_integration, db, **kwargs)


replicator_registry = ReplicatorRegistry()
