from datetime import timedelta

import pytest

from conftest import T0
from queuectl.config import RuntimeConfig
from queuectl.models import Job
from queuectl.util.time import from_db, to_db
from queuectl.worker.execution import ExecutionResult
from queuectl.worker.resolver import LATEST, backoff_seconds, resolve

OK = ExecutionResult(stdout="all good", stderr="")
FAILED = ExecutionResult(stdout="half", stderr="boom", failure_reason="Command failed with exit code 1: x")
TIMED_OUT = ExecutionResult(
    stdout="", stderr="", timed_out=True, timeout_ms=300,
    failure_reason="Command timed out after 300ms and was killed: x",
)


def _job(**kw):
    kw.setdefault("attempts", 0)
    return Job(id="j", command="x", run_at=to_db(T0), **kw)


def test_success_completes_and_counts_the_attempt():
    update = resolve(_job(attempts=2), OK, RuntimeConfig(), now=T0)
    assert update.state == "completed"
    assert update.attempts == 3
    assert update.output == "all good"
    assert update.error == ""
    assert update.run_at is None


def test_first_failure_retries_after_base_seconds():
    update = resolve(_job(), FAILED, RuntimeConfig(backoff_base=2), now=T0)
    assert update.state == "pending"
    assert update.attempts == 1
    assert update.run_at == to_db(T0 + timedelta(seconds=2))
    assert update.output == "half"
    assert update.error == "Command failed with exit code 1: x\n--- STDERR ---\nboom"


def test_backoff_is_exponential_in_attempts():
    second = resolve(_job(attempts=1), FAILED, RuntimeConfig(backoff_base=2, max_retries=5), now=T0)
    third = resolve(_job(attempts=2), FAILED, RuntimeConfig(backoff_base=3, max_retries=5), now=T0)
    assert from_db(second.run_at) - T0 == timedelta(seconds=4)
    assert from_db(third.run_at) - T0 == timedelta(seconds=27)


def test_retry_run_at_is_strictly_after_the_failure():
    update = resolve(_job(), FAILED, RuntimeConfig(backoff_base=1), now=T0)
    assert from_db(update.run_at) > T0


def test_exhausted_retries_go_dead():
    update = resolve(_job(attempts=2), FAILED, RuntimeConfig(max_retries=3), now=T0)
    assert update.state == "dead"
    assert update.attempts == 3
    assert update.run_at is None
    assert "boom" in update.error


def test_per_job_max_retries_overrides_config():
    assert resolve(_job(max_retries=5, attempts=2), FAILED, RuntimeConfig(max_retries=3), now=T0).state == "pending"
    assert resolve(_job(max_retries=1), FAILED, RuntimeConfig(max_retries=3), now=T0).state == "dead"
    assert resolve(_job(max_retries=0), FAILED, RuntimeConfig(max_retries=3), now=T0).state == "dead"


def test_timeout_gets_its_own_annotation():
    timed = resolve(_job(), TIMED_OUT, RuntimeConfig(), now=T0)
    plain = resolve(_job(), FAILED, RuntimeConfig(), now=T0)
    assert timed.error.startswith("Job TIMED OUT (exceeded 300ms).\n")
    assert "TIMED OUT" not in plain.error


def test_resolve_does_not_mutate_the_job():
    job = _job(attempts=1)
    resolve(job, FAILED, RuntimeConfig(), now=T0)
    assert job.attempts == 1
    assert job.state == "pending"


@pytest.mark.parametrize("base,attempts,expected", [(2, 1, 2), (2, 2, 4), (2, 3, 8), (3, 2, 9), (1, 10, 1)])
def test_backoff_seconds(base, attempts, expected):
    assert backoff_seconds(base, attempts) == expected


def test_backoff_beyond_the_calendar_parks_the_job_at_the_latest_instant():
    # 1000 ** 4 seconds is tens of thousands of years
    update = resolve(_job(attempts=3), FAILED, RuntimeConfig(backoff_base=1000, max_retries=10), now=T0)
    assert update.state == "pending"
    assert update.attempts == 4
    assert update.run_at == to_db(LATEST) == "9999-12-31 23:59:59.999999"
