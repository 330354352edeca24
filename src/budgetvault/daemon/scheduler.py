"""APScheduler-based runner for tagged recurring jobs.

Implements the JobRunner interface used by BackupScheduler: interval jobs
with an initial delay, device constraints checked at fire time, and
exponential backoff retries scheduled as one-shot jobs. Every execution
is logged to .bv/jobs.log.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from budgetvault.backup.scheduler import BackoffPolicy, Constraints
from budgetvault.core.fileutil import atomic_write
from budgetvault.core.models import JobOutcome, JobState, JobStatus
from budgetvault.core.signals import ObservableValue

log = logging.getLogger(__name__)

_RETRY_SUFFIX = ":retry"
_DEFER_SUFFIX = ":deferred"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Registration:
    tag: str
    job_id: str
    period: timedelta
    constraints: Constraints
    backoff: BackoffPolicy
    body: Callable
    attempt: int = 0
    running: bool = False


class TaskScheduler:
    """Runs registered jobs on an APScheduler BackgroundScheduler.

    Jobs can be registered before ``start()``; they stay pending until the
    scheduler starts.
    """

    def __init__(
        self,
        home: Path,
        config: dict | None = None,
        constraints_probe=None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self.home = home
        self._config = config or {}
        schedule_cfg = self._config.get("backup", {}).get("schedule", {})
        self._recheck = timedelta(minutes=schedule_cfg.get("constraint_recheck_minutes", 15))
        if constraints_probe is None:
            from budgetvault.daemon.constraints import DeviceConstraints

            constraints_probe = DeviceConstraints()
        self._probe = constraints_probe
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self._registrations: dict[str, _Registration] = {}
        self._statuses: dict[str, ObservableValue[list[JobStatus]]] = {}
        self._job_status: dict[str, JobStatus] = {}
        self._lock = threading.RLock()
        self._state_path = home / ".bv" / "scheduler_state.json"
        self._log_path = home / ".bv" / "jobs.log"
        self._state: dict = self._load_state()

    # --- State and log files ---

    def _load_state(self) -> dict:
        """Load per-tag last-success and first-due timestamps from scheduler_state.json."""
        data: dict = {}
        if self._state_path.exists():
            try:
                data = json.loads(self._state_path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError):
                log.warning("Failed to load scheduler state, starting fresh")
        if not isinstance(data, dict):
            data = {}
        return {
            "last_success": dict(data.get("last_success") or {}),
            "first_due": dict(data.get("first_due") or {}),
        }

    def _save_state(self) -> None:
        atomic_write(self._state_path, json.dumps(self._state, indent=2))

    def _log_execution(self, tag: str, status: str, message: str) -> None:
        """Append a line to jobs.log."""
        ts = _now().strftime("%Y-%m-%dT%H:%M:%SZ")
        line = f"[{ts}] [{status}] {tag}: {message}\n"

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(line)

    def get_log_lines(self, n: int = 50) -> list[str]:
        """Read last N lines from jobs.log."""
        if not self._log_path.exists():
            return []
        lines = self._log_path.read_text(encoding="utf-8").splitlines()
        return lines[-n:]

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the scheduler and catch up on overdue jobs."""
        self._scheduler.start()
        log.info("TaskScheduler started with %d jobs", len(self._scheduler.get_jobs()))
        self._run_missed_jobs()

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        log.info("TaskScheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler.running

    def _stored_time(self, section: str, tag: str) -> datetime | None:
        raw = self._state[section].get(tag)
        if raw is None:
            return None
        try:
            dt = datetime.fromisoformat(raw)
        except (ValueError, TypeError):
            log.warning("Ignoring malformed %s for %s: %r", section, tag, raw)
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def _run_missed_jobs(self) -> None:
        """Fire jobs that are overdue.

        A job is overdue when its last success is more than one period ago,
        or, if it never succeeded, when its first run was due before now.
        Registrations do not survive a restart, so without this a daemon
        restarted more often than the initial delay would never back up.
        """
        now = _now()
        with self._lock:
            registrations = list(self._registrations.values())
        for reg in registrations:
            last_success = self._stored_time("last_success", reg.tag)
            if last_success is not None:
                overdue = now - last_success > reg.period
            else:
                first_due = self._stored_time("first_due", reg.tag)
                overdue = first_due is not None and first_due <= now
            if overdue:
                log.info("Running missed job: %s", reg.tag)
                with self._lock:
                    self._add_one_shot(reg, _DEFER_SUFFIX, now)

    # --- JobRunner interface ---

    def register(
        self,
        tag: str,
        period: timedelta,
        initial_delay: timedelta,
        constraints: Constraints,
        backoff: BackoffPolicy,
        body: Callable,
    ) -> str:
        """Add a recurring job. Returns its id.

        Until the tag first succeeds, its first due time is persisted and
        reused by later registrations, so re-registering on every daemon
        start does not keep pushing the first run back.
        """
        job_id = f"{tag}-{uuid.uuid4().hex[:8]}"
        never_succeeded = tag not in self._state["last_success"]
        first_run = self._stored_time("first_due", tag) if never_succeeded else None
        if first_run is None:
            first_run = _now() + initial_delay
            if never_succeeded:
                self._state["first_due"][tag] = first_run.isoformat()
                self._save_state()
        reg = _Registration(
            tag=tag, job_id=job_id, period=period,
            constraints=constraints, backoff=backoff, body=body,
        )
        with self._lock:
            self._registrations[job_id] = reg
            self._scheduler.add_job(
                self._fire,
                trigger=IntervalTrigger(seconds=period.total_seconds(), start_date=first_run),
                args=[job_id],
                id=job_id,
                name=tag,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=None,
            )
        self._publish(reg, JobState.QUEUED, next_run_time=first_run)
        log.info("Registered job %s (%s), first run at %s", job_id, tag, first_run.isoformat())
        return job_id

    def cancel_by_tag(self, tag: str) -> int:
        """Remove every job and pending retry carrying the tag."""
        removed = 0
        with self._lock:
            for job in self._scheduler.get_jobs():
                if job.name == tag:
                    self._remove_job(job.id)
            for job_id in [j for j, r in self._registrations.items() if r.tag == tag]:
                del self._registrations[job_id]
                self._job_status.pop(job_id, None)
                removed += 1
        self._refresh_statuses(tag)
        return removed

    def observe_status_by_tag(self, tag: str) -> ObservableValue[list[JobStatus]]:
        with self._lock:
            if tag not in self._statuses:
                self._statuses[tag] = ObservableValue([])
            return self._statuses[tag]

    def active_job_ids(self, tag: str) -> list[str]:
        """Ids of the recurring (non one-shot) jobs for a tag."""
        with self._lock:
            return [j.id for j in self._scheduler.get_jobs() if j.name == tag and j.id in self._registrations]

    def run_now(self, tag: str) -> list[JobOutcome]:
        """Run every job of the tag immediately, ignoring constraints."""
        with self._lock:
            job_ids = [j for j, r in self._registrations.items() if r.tag == tag]
        return [self._fire(job_id, check_constraints=False) for job_id in job_ids]

    # --- Execution ---

    def _fire(self, job_id: str, check_constraints: bool = True) -> JobOutcome | None:
        with self._lock:
            reg = self._registrations.get(job_id)
            if reg is None or reg.running:
                return None

        if check_constraints:
            ok, reason = self._probe.check(reg.constraints)
            if not ok:
                retry_at = _now() + self._recheck
                with self._lock:
                    self._add_one_shot(reg, _DEFER_SUFFIX, retry_at)
                self._publish(reg, JobState.QUEUED, next_run_time=retry_at, message=reason)
                log.info("Job %s deferred: %s", job_id, reason)
                return None

        with self._lock:
            if reg.running or job_id not in self._registrations:
                return None
            reg.running = True
            # A fresh run supersedes any pending retry
            self._remove_job(job_id + _RETRY_SUFFIX)

        self._publish(reg, JobState.RUNNING)
        try:
            outcome = self._invoke(reg.body)
        except Exception as e:
            log.warning("Job %s raised: %s", job_id, e, exc_info=True)
            outcome = JobOutcome.FAILURE
        finally:
            reg.running = False

        self._handle_outcome(reg, outcome)
        return outcome

    def _invoke(self, body: Callable) -> JobOutcome:
        result = body()
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
        return JobOutcome(result)

    def _handle_outcome(self, reg: _Registration, outcome: JobOutcome) -> None:
        with self._lock:
            if reg.job_id not in self._registrations:
                return  # cancelled while running

        if outcome == JobOutcome.SUCCESS:
            reg.attempt = 0
            self._state["last_success"][reg.tag] = _now().isoformat()
            self._state["first_due"].pop(reg.tag, None)
            self._save_state()
            self._log_execution(reg.tag, "OK", "succeeded")
            self._publish(reg, JobState.SUCCEEDED, next_run_time=self._next_periodic(reg))
            return

        if outcome == JobOutcome.RETRY:
            reg.attempt += 1
            if reg.attempt <= reg.backoff.max_retries:
                retry_at = _now() + reg.backoff.delay(reg.attempt)
                with self._lock:
                    self._add_one_shot(reg, _RETRY_SUFFIX, retry_at)
                self._log_execution(reg.tag, "RETRY", f"attempt {reg.attempt}, next at {retry_at.isoformat()}")
                self._publish(reg, JobState.RETRYING, next_run_time=retry_at)
                return
            message = f"retries exhausted after {reg.backoff.max_retries} attempts"
        else:
            message = "failed"

        reg.attempt = 0
        self._log_execution(reg.tag, "FAIL", message)
        self._publish(reg, JobState.FAILED, next_run_time=self._next_periodic(reg), message=message)

    def _next_periodic(self, reg: _Registration) -> datetime | None:
        job = self._scheduler.get_job(reg.job_id)
        if job is None:
            return None
        return job.trigger.get_next_fire_time(None, _now())

    def _add_one_shot(self, reg: _Registration, suffix: str, run_at: datetime) -> None:
        one_shot_id = reg.job_id + suffix
        self._remove_job(one_shot_id)
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=run_at),
            args=[reg.job_id],
            id=one_shot_id,
            name=reg.tag,
            misfire_grace_time=None,
        )

    def _remove_job(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    # --- Status publishing ---

    def _publish(
        self,
        reg: _Registration,
        state: JobState,
        next_run_time: datetime | None = None,
        message: str = "",
    ) -> None:
        with self._lock:
            if reg.job_id not in self._registrations:
                return
            self._job_status[reg.job_id] = JobStatus(
                tag=reg.tag,
                job_id=reg.job_id,
                state=state,
                attempt=reg.attempt,
                next_run_time=next_run_time,
                message=message,
            )
        self._refresh_statuses(reg.tag)

    def _refresh_statuses(self, tag: str) -> None:
        with self._lock:
            statuses = [
                s for job_id, s in self._job_status.items()
                if job_id in self._registrations and s.tag == tag
            ]
        self.observe_status_by_tag(tag).set(statuses)
