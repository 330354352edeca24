"""Recurring background backup: scheduling policy and job body."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol

from budgetvault.backup.errors import BackupError
from budgetvault.core.models import JobOutcome, JobState, JobStatus
from budgetvault.core.signals import ObservableValue

log = logging.getLogger(__name__)

BACKUP_JOB_TAG = "backuptag"


@dataclass(frozen=True)
class Constraints:
    """Device conditions that must hold before the job body runs."""

    requires_charging: bool = True
    requires_network: bool = True


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff between retries of a failed run."""

    initial: timedelta = timedelta(minutes=5)
    max_delay: timedelta = timedelta(hours=5)
    max_retries: int = 5

    def delay(self, attempt: int) -> timedelta:
        """Delay before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.initial * (2 ** (attempt - 1)), self.max_delay)


@dataclass(frozen=True)
class SchedulePolicy:
    period: timedelta = timedelta(days=7)
    initial_delay: timedelta = timedelta(days=1)
    constraints: Constraints = field(default_factory=Constraints)
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    @classmethod
    def from_config(cls, config: dict) -> SchedulePolicy:
        cfg = config.get("backup", {}).get("schedule", {})
        return cls(
            period=timedelta(days=cfg.get("period_days", 7)),
            initial_delay=timedelta(days=cfg.get("initial_delay_days", 1)),
            constraints=Constraints(
                requires_charging=cfg.get("requires_charging", True),
                requires_network=cfg.get("requires_network", True),
            ),
            backoff=BackoffPolicy(
                initial=timedelta(minutes=cfg.get("backoff_initial_minutes", 5)),
                max_delay=timedelta(minutes=cfg.get("backoff_max_minutes", 300)),
                max_retries=cfg.get("max_retries", 5),
            ),
        )


class JobRunner(Protocol):
    """Mechanism that runs tagged recurring tasks."""

    def register(
        self,
        tag: str,
        period: timedelta,
        initial_delay: timedelta,
        constraints: Constraints,
        backoff: BackoffPolicy,
        body: Callable,
    ) -> str:
        ...

    def cancel_by_tag(self, tag: str) -> int:
        ...

    def observe_status_by_tag(self, tag: str) -> ObservableValue[list[JobStatus]]:
        ...


class BackupScheduler:
    """Keeps exactly one recurring backup registered under BACKUP_JOB_TAG.

    Does not stop a manual backup from overlapping a scheduled one; callers
    check ``is_backup_running()`` or the operation flag first.
    """

    def __init__(self, runner: JobRunner, service, policy: SchedulePolicy | None = None) -> None:
        self._runner = runner
        self._service = service
        self.policy = policy or SchedulePolicy()

    def schedule(self) -> str:
        """(Re)register the recurring backup. Returns the new job id."""
        self.unschedule()
        job_id = self._runner.register(
            BACKUP_JOB_TAG,
            self.policy.period,
            self.policy.initial_delay,
            self.policy.constraints,
            self.policy.backoff,
            self.run_backup_job,
        )
        log.info(
            "Scheduled backup every %s (first run in %s)",
            self.policy.period, self.policy.initial_delay,
        )
        return job_id

    def unschedule(self) -> None:
        removed = self._runner.cancel_by_tag(BACKUP_JOB_TAG)
        if removed:
            log.info("Cancelled %d backup job(s)", removed)

    def job_statuses(self) -> list[JobStatus]:
        return list(self._runner.observe_status_by_tag(BACKUP_JOB_TAG).value)

    def observe_job_status(self) -> AsyncIterator[list[JobStatus]]:
        """Current job statuses, then every update. Re-call to restart."""
        return self._runner.observe_status_by_tag(BACKUP_JOB_TAG).stream()

    def is_backup_running(self) -> bool:
        return any(s.state == JobState.RUNNING for s in self.job_statuses())

    async def run_backup_job(self) -> JobOutcome:
        """Body of the recurring task."""
        try:
            result = await self._service.backup()
        except BackupError as e:
            if e.retryable:
                log.warning("Scheduled backup failed, will retry: %s", e)
                return JobOutcome.RETRY
            log.error("Scheduled backup failed permanently: %s", e)
            return JobOutcome.FAILURE
        log.info("Scheduled backup done (%d bytes)", result.bytes_transferred)
        return JobOutcome.SUCCESS
