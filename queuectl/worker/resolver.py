"""Retry / backoff / DLQ decisions for a finished execution attempt.

Pure: takes the claimed job and what the execution produced, returns the
JobUpdate to persist. The caller does the I/O.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from ..config import RuntimeConfig
from ..constants import JobState
from ..models import Job, JobUpdate
from ..util.time import after_seconds, to_db, utcnow
from .execution import ExecutionResult

LATEST = datetime.max.replace(tzinfo=timezone.utc)


def backoff_seconds(base: int, attempts: int) -> int:
    """delay = base ** attempts, no jitter and no cap."""
    return base ** attempts


def effective_max_retries(job: Job, config: RuntimeConfig) -> int:
    return job.max_retries if job.max_retries is not None else config.max_retries


def failure_text(result: ExecutionResult) -> str:
    text = result.failure_reason or ""
    if result.stderr:
        text += f"\n--- STDERR ---\n{result.stderr}"
    if result.timed_out:
        text = f"Job TIMED OUT (exceeded {result.timeout_ms}ms).\n{text}"
    return text


def resolve(
    job: Job,
    result: ExecutionResult,
    config: RuntimeConfig,
    now: Optional[datetime] = None,
) -> JobUpdate:
    # Counted here, exactly once per finished attempt, whatever the outcome
    attempts = job.attempts + 1

    if result.ok:
        return JobUpdate(
            state=JobState.COMPLETED.value,
            attempts=attempts,
            output=result.stdout,
            error=result.stderr,
        )

    error = failure_text(result)
    if attempts >= effective_max_retries(job, config):
        return JobUpdate(
            state=JobState.DEAD.value,
            attempts=attempts,
            output=result.stdout,
            error=error,
        )

    delay = backoff_seconds(config.backoff_base, attempts)
    try:
        run_at = after_seconds(delay, now or utcnow())
    except OverflowError:
        # past the last representable instant; the job waits "forever"
        run_at = LATEST
    return JobUpdate(
        state=JobState.PENDING.value,
        attempts=attempts,
        output=result.stdout,
        error=error,
        run_at=to_db(run_at),
    )
