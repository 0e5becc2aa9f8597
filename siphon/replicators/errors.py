"""Typed errors raised by the replication engine."""


class InvalidService(RuntimeError):
    """No replicator is registered under the integration's service name."""


class CredentialsMissing(RuntimeError):
    """The integration lacks the credentials needed for the operation.

    Configuration error: never retried automatically. The onboarding state
    machine exists to prevent this from reaching runtime.
    """


class DependencyMissing(RuntimeError):
    """A connector with a dependency was created without an integration to depend on."""


class InvalidPrecondition(RuntimeError):
    """The integration or stored data is not in a state the operation supports."""


class InvalidPayload(ValueError):
    """A single payload could not be processed.

    Backfill skips (and logs) the offending item instead of aborting the page.
    """


class ColumnValueMissing(KeyError):
    """A required column could not be resolved from the payload."""


class BackfillFetchError(RuntimeError):
    """A backfill page fetch failed in a way worth retrying."""
