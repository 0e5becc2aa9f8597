"""Job registry for scheduled and one-shot jobs.

Provides a centralized registry for all background work, with:
- Job configuration (cron, retries)
- Automatic registration with APScheduler
- One-shot ``date`` jobs for work enqueued by request handlers
- Error handling and status tracking
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from typing import Any
from typing import Callable

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)


@dataclass
class JobConfig:
    """Configuration for a scheduled job."""

    id: str  # Unique job identifier (e.g., "sync-target-enqueue-scheduled")
    cron: str  # Cron expression (e.g., "* * * * *")
    func: Callable[[], Any]
    enabled: bool = True
    max_attempts: int = 1
    tags: list[str] = field(default_factory=list)
    description: str = ""


@dataclass
class JobRunResult:
    """Result of a job execution."""

    job_id: str
    status: str  # "success", "failure"
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    result: Any = None
    error: str | None = None
    error_type: str | None = None


class JobRegistry:
    """Registry for scheduled jobs and the scheduler that runs them."""

    def __init__(self):
        self._jobs: dict[str, JobConfig] = {}
        self._scheduler: BaseScheduler | None = None
        # Session factory handed to job bodies; None means the app default
        self.session_factory = None

    def register(self, config: JobConfig) -> bool:
        """Register a job configuration.

        Duplicate job IDs are skipped with a warning (not fatal).

        Returns:
            True if registered, False if skipped (duplicate).
        """
        if config.id in self._jobs:
            logger.debug("Job %s already registered, skipping duplicate", config.id)
            return False
        self._jobs[config.id] = config
        logger.info("Registered job: %s (cron=%s, enabled=%s)", config.id, config.cron, config.enabled)
        return True

    def get(self, job_id: str) -> JobConfig | None:
        """Get a job configuration by ID."""
        return self._jobs.get(job_id)

    def list_jobs(self, enabled_only: bool = False) -> list[JobConfig]:
        """List all registered jobs."""
        jobs = list(self._jobs.values())
        if enabled_only:
            jobs = [j for j in jobs if j.enabled]
        return jobs

    def run_job(self, job_id: str) -> JobRunResult:
        """Execute a job immediately, retrying up to ``max_attempts``."""
        config = self._jobs.get(job_id)
        if not config:
            now = datetime.now(UTC)
            return JobRunResult(
                job_id=job_id,
                status="failure",
                started_at=now,
                ended_at=now,
                duration_ms=0,
                error=f"Job {job_id} not found",
                error_type="NotFoundError",
            )

        started_at = datetime.now(UTC)
        status = "failure"
        result = None
        error = None
        error_type = None
        attempts = 0

        while attempts < config.max_attempts:
            attempts += 1
            try:
                result = config.func()
                status = "success"
                error = None
                error_type = None
                break
            except Exception as e:
                error = f"{str(e)[:5000]} (attempt {attempts}/{config.max_attempts})"
                error_type = type(e).__name__
                logger.exception("Job %s failed (attempt %d/%d): %s", job_id, attempts, config.max_attempts, e)

        ended_at = datetime.now(UTC)
        return JobRunResult(
            job_id=job_id,
            status=status,
            started_at=started_at,
            ended_at=ended_at,
            duration_ms=int((ended_at - started_at).total_seconds() * 1000),
            result=result,
            error=error,
            error_type=error_type,
        )

    def schedule_all(self, scheduler: BaseScheduler) -> int:
        """Schedule all enabled jobs with APScheduler.

        Returns count of jobs scheduled.
        """
        self._scheduler = scheduler
        count = 0
        for config in self._jobs.values():
            if not config.enabled:
                logger.debug("Skipping disabled job %s", config.id)
                continue

            def job_wrapper(job_id: str = config.id) -> None:
                self.run_job(job_id)

            scheduler.add_job(
                job_wrapper,
                CronTrigger.from_crontab(config.cron, timezone=UTC),
                id=f"job_{config.id}",
                replace_existing=True,
            )
            logger.info("Scheduled job %s with cron: %s", config.id, config.cron)
            count += 1
        return count

    def detach_scheduler(self) -> None:
        self._scheduler = None

    def enqueue(self, job_id: str, func: Callable[..., Any], run_at: datetime | None, *args: Any) -> None:
        """Run ``func(*args)`` once at *run_at*.

        Without a scheduler (tests, scheduler disabled) the function runs
        inline, right away.
        """
        if self._scheduler is None:
            logger.debug("No scheduler; running %s inline", job_id)
            func(*args)
            return
        self._scheduler.add_job(
            func,
            DateTrigger(run_date=run_at or datetime.now(UTC)),
            args=list(args),
            id=job_id,
            replace_existing=True,
        )
        logger.debug("Enqueued %s for %s", job_id, run_at)


# Global job registry instance
job_registry = JobRegistry()
