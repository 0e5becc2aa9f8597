"""Background jobs (APScheduler)."""

from siphon.jobs.registry import JobConfig
from siphon.jobs.registry import JobRegistry
from siphon.jobs.registry import JobRunResult
from siphon.jobs.registry import job_registry

__all__ = ["JobConfig", "JobRegistry", "JobRunResult", "job_registry"]
