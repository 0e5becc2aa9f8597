"""Registration metadata for a replicator."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable


@dataclass(frozen=True)
class Descriptor:
    """Immutable description of one connector.

    ``name`` doubles as the ``service_name`` stored on the integration and is
    the registry lookup key. ``ctor`` builds a live replicator from
    ``(service_integration, db)``.
    """

    name: str
    ctor: Callable[..., Any]
    resource_name_singular: str
    resource_name_plural: str = ""
    supports_webhooks: bool = False
    supports_backfill: bool = False
    # This connector cannot be created until an integration of the dependency exists.
    dependency_descriptor: "Descriptor | None" = None
    api_docs_url: str = ""
    feature_roles: tuple[str, ...] = field(default_factory=tuple)

    @property
    def plural_name(self) -> str:
        return self.resource_name_plural or f"{self.resource_name_singular}s"

    @property
    def default_table_name(self) -> str:
        return self.name
