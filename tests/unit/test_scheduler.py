"""Tests for budgetvault.daemon.scheduler: TaskScheduler."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

from budgetvault.backup.scheduler import BackoffPolicy, Constraints
from budgetvault.core.models import JobOutcome, JobState
from budgetvault.daemon.scheduler import TaskScheduler

TAG = "backuptag"


def _probe(ok: bool = True, reason: str = "") -> MagicMock:
    probe = MagicMock()
    probe.check.return_value = (ok, reason)
    return probe


def _register(s: TaskScheduler, body, backoff: BackoffPolicy | None = None) -> str:
    return s.register(
        TAG,
        period=timedelta(days=7),
        initial_delay=timedelta(days=1),
        constraints=Constraints(),
        backoff=backoff or BackoffPolicy(),
        body=body,
    )


def _status(s: TaskScheduler):
    statuses = s.observe_status_by_tag(TAG).value
    assert len(statuses) == 1
    return statuses[0]


class TestTaskSchedulerInit:
    def test_defaults(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        assert s.home == tmp_path
        assert not s.is_running

    def test_start_stop(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        s.start()
        try:
            assert s.is_running
        finally:
            s.stop()
        assert not s.is_running


class TestSchedulerState:
    def test_state_saved_on_success(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.SUCCESS)
        s._fire(job_id)

        data = json.loads((tmp_path / ".bv" / "scheduler_state.json").read_text(encoding="utf-8"))
        assert TAG in data["last_success"]
        assert TAG not in data["first_due"]

    def test_state_loaded_on_init(self, tmp_path: Path):
        bv = tmp_path / ".bv"
        bv.mkdir(parents=True)
        (bv / "scheduler_state.json").write_text('{"last_success": {"backuptag": "2026-01-01T00:00:00+00:00"}}', encoding="utf-8")

        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        assert s._state["last_success"][TAG] == "2026-01-01T00:00:00+00:00"

    def test_state_handles_corrupt_file(self, tmp_path: Path):
        bv = tmp_path / ".bv"
        bv.mkdir(parents=True)
        (bv / "scheduler_state.json").write_text("not json", encoding="utf-8")

        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        assert s._state == {"last_success": {}, "first_due": {}}


class TestLogExecution:
    def test_log_writes_to_file(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        s._log_execution(TAG, "OK", "succeeded")

        content = (tmp_path / ".bv" / "jobs.log").read_text(encoding="utf-8")
        assert f"[OK] {TAG}: succeeded" in content

    def test_get_log_lines(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        for i in range(10):
            s._log_execution(TAG, "OK", f"run {i}")

        lines = s.get_log_lines(3)
        assert len(lines) == 3
        assert "run 9" in lines[-1]

    def test_get_log_lines_no_file(self, tmp_path: Path):
        assert TaskScheduler(tmp_path, constraints_probe=_probe()).get_log_lines() == []


class TestRegister:
    def test_register_queues(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.SUCCESS)

        assert job_id.startswith(f"{TAG}-")
        assert s.active_job_ids(TAG) == [job_id]
        assert _status(s).state == JobState.QUEUED

    def test_cancel_by_tag(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        _register(s, lambda: JobOutcome.RETRY)
        job_id = _register(s, lambda: JobOutcome.RETRY)
        s._fire(job_id)

        assert s.cancel_by_tag(TAG) == 2
        assert s._scheduler.get_jobs() == []
        assert s.observe_status_by_tag(TAG).value == []
        assert s.cancel_by_tag(TAG) == 0

    def test_cancel_leaves_other_tags(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        _register(s, lambda: JobOutcome.SUCCESS)
        other = s.register(
            "othertag", timedelta(days=1), timedelta(0),
            Constraints(), BackoffPolicy(), lambda: JobOutcome.SUCCESS,
        )
        s.cancel_by_tag(TAG)
        assert s.active_job_ids("othertag") == [other]


class TestFire:
    def test_success(self, tmp_path: Path):
        calls = []
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: calls.append(1) or JobOutcome.SUCCESS)

        assert s._fire(job_id) == JobOutcome.SUCCESS
        assert calls == [1]
        status = _status(s)
        assert status.state == JobState.SUCCEEDED
        assert status.next_run_time is not None
        assert "[OK] backuptag: succeeded" in s.get_log_lines()[-1]

    def test_async_body(self, tmp_path: Path):
        async def body():
            return JobOutcome.SUCCESS

        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, body)
        assert s._fire(job_id) == JobOutcome.SUCCESS

    def test_retry_scheduled_with_backoff(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.RETRY)

        before = datetime.now(timezone.utc)
        assert s._fire(job_id) == JobOutcome.RETRY

        retry = s._scheduler.get_job(job_id + ":retry")
        assert retry is not None
        delay = retry.trigger.run_date - before
        assert timedelta(minutes=5) <= delay < timedelta(minutes=6)

        status = _status(s)
        assert status.state == JobState.RETRYING
        assert status.attempt == 1
        assert "[RETRY]" in s.get_log_lines()[-1]

    def test_second_retry_doubles(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.RETRY)
        s._fire(job_id)

        before = datetime.now(timezone.utc)
        s._fire(job_id)

        retry = s._scheduler.get_job(job_id + ":retry")
        delay = retry.trigger.run_date - before
        assert timedelta(minutes=10) <= delay < timedelta(minutes=11)
        assert _status(s).attempt == 2

    def test_retries_exhausted(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.RETRY, BackoffPolicy(max_retries=2))

        for _ in range(3):
            s._fire(job_id)

        status = _status(s)
        assert status.state == JobState.FAILED
        assert "retries exhausted" in status.message
        # The recurring job survives for the next period
        assert s.active_job_ids(TAG) == [job_id]

    def test_success_resets_attempts(self, tmp_path: Path):
        outcomes = iter([JobOutcome.RETRY, JobOutcome.SUCCESS])
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: next(outcomes))

        s._fire(job_id)
        s._fire(job_id)

        assert _status(s).attempt == 0
        assert s._scheduler.get_job(job_id + ":retry") is None

    def test_failure_does_not_retry(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.FAILURE)

        s._fire(job_id)

        assert _status(s).state == JobState.FAILED
        assert s._scheduler.get_job(job_id + ":retry") is None
        assert "[FAIL]" in s.get_log_lines()[-1]

    def test_body_exception_is_failure(self, tmp_path: Path):
        def body():
            raise RuntimeError("bug")

        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, body)

        assert s._fire(job_id) == JobOutcome.FAILURE
        assert _status(s).state == JobState.FAILED

    def test_unmet_constraints_defer(self, tmp_path: Path):
        calls = []
        s = TaskScheduler(tmp_path, constraints_probe=_probe(False, "waiting for charger"))
        job_id = _register(s, lambda: calls.append(1) or JobOutcome.SUCCESS)

        assert s._fire(job_id) is None

        assert calls == []
        assert s._scheduler.get_job(job_id + ":deferred") is not None
        status = _status(s)
        assert status.state == JobState.QUEUED
        assert status.message == "waiting for charger"

    def test_run_now_ignores_constraints(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe(False, "waiting for network"))
        _register(s, lambda: JobOutcome.SUCCESS)
        assert s.run_now(TAG) == [JobOutcome.SUCCESS]

    def test_cancelled_job_does_not_fire(self, tmp_path: Path):
        calls = []
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: calls.append(1) or JobOutcome.SUCCESS)
        s.cancel_by_tag(TAG)

        assert s._fire(job_id) is None
        assert calls == []


class TestMissedJobs:
    def test_overdue_job_runs_on_start(self, tmp_path: Path):
        bv = tmp_path / ".bv"
        bv.mkdir(parents=True)
        last = (datetime.now(timezone.utc) - timedelta(days=8)).isoformat()
        (bv / "scheduler_state.json").write_text(json.dumps({"last_success": {TAG: last}}), encoding="utf-8")

        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.SUCCESS)
        s._run_missed_jobs()

        assert s._scheduler.get_job(job_id + ":deferred") is not None

    def test_recent_job_waits(self, tmp_path: Path):
        bv = tmp_path / ".bv"
        bv.mkdir(parents=True)
        last = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
        (bv / "scheduler_state.json").write_text(json.dumps({"last_success": {TAG: last}}), encoding="utf-8")

        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.SUCCESS)
        s._run_missed_jobs()

        assert s._scheduler.get_job(job_id + ":deferred") is None

    def test_first_due_persisted_across_restarts(self, tmp_path: Path):
        first = TaskScheduler(tmp_path, constraints_probe=_probe())
        _register(first, lambda: JobOutcome.SUCCESS)
        due = _status(first).next_run_time

        second = TaskScheduler(tmp_path, constraints_probe=_probe())
        _register(second, lambda: JobOutcome.SUCCESS)

        assert _status(second).next_run_time == due

    def test_never_succeeded_job_runs_once_first_due_passes(self, tmp_path: Path):
        bv = tmp_path / ".bv"
        bv.mkdir(parents=True)
        due = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        (bv / "scheduler_state.json").write_text(json.dumps({"first_due": {TAG: due}}), encoding="utf-8")

        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.SUCCESS)
        s._run_missed_jobs()

        assert s._scheduler.get_job(job_id + ":deferred") is not None

    def test_never_succeeded_job_waits_for_first_due(self, tmp_path: Path):
        s = TaskScheduler(tmp_path, constraints_probe=_probe())
        job_id = _register(s, lambda: JobOutcome.SUCCESS)
        s._run_missed_jobs()

        assert s._scheduler.get_job(job_id + ":deferred") is None
