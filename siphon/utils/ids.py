"""Opaque public identifiers (``svi_1a2b...``)."""

import secrets


def new_opaque_id(prefix: str) -> str:
    """Return a random public identifier with a resource-type prefix."""
    return f"{prefix}_{secrets.token_hex(10)}"
