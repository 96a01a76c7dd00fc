from __future__ import annotations
import json
import sqlite3
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from rich.console import Console
from rich.markup import escape

from .constants import JobState
from .errors import InvalidSpec
from .models import Job
from .store import insert_if_absent
from .util.time import after_seconds, parse_user_ts, to_db, utcnow

console = Console()


def parse_payload(payload: str) -> dict:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise InvalidSpec(f"Invalid JSON passed to enqueue: {e.msg}") from None
    if not isinstance(data, dict):
        raise InvalidSpec("Job payload must be a JSON object")
    return data


def _optional_int(data: Mapping[str, Any], key: str, minimum: Optional[int] = None) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidSpec(f"'{key}' must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise InvalidSpec(f"'{key}' must be an integer, got {value!r}") from None
    if minimum is not None and parsed < minimum:
        raise InvalidSpec(f"'{key}' must be >= {minimum}, got {parsed}")
    return parsed


def build_job(spec: Mapping[str, Any], now: Optional[datetime] = None) -> Job:
    """Validate a job spec and turn it into a fresh pending Job.

    Recognised keys: id, command, priority, max_retries, timeout (ms),
    run_at (ISO-8601, naive = UTC) and delay (seconds). run_at and delay
    are mutually exclusive.
    """
    job_id = spec.get("id")
    command = spec.get("command")
    if not isinstance(job_id, str) or not job_id.strip():
        raise InvalidSpec("Job must contain a non-empty 'id'")
    if not isinstance(command, str) or not command.strip():
        raise InvalidSpec("Job must contain a non-empty 'command'")

    now = now or utcnow()
    priority = _optional_int(spec, "priority") or 0
    max_retries = _optional_int(spec, "max_retries", minimum=0)
    timeout = _optional_int(spec, "timeout", minimum=1)
    delay = _optional_int(spec, "delay", minimum=0)

    # Determine scheduling
    run_at_raw = spec.get("run_at")
    if run_at_raw is not None and delay is not None:
        raise InvalidSpec("Use either 'run_at' or 'delay', not both")
    if delay is not None:
        run_at = after_seconds(delay, now)
    elif run_at_raw is not None:
        try:
            run_at = parse_user_ts(str(run_at_raw))
        except ValueError:
            raise InvalidSpec(f"Invalid run_at timestamp: {run_at_raw!r}") from None
    else:
        run_at = now

    stamp = to_db(now)
    return Job(
        id=job_id.strip(),
        command=command,
        state=JobState.PENDING.value,
        max_retries=max_retries,
        priority=priority,
        timeout=timeout,
        run_at=to_db(run_at),
        created_at=stamp,
        updated_at=stamp,
    )


def enqueue_job(
    conn: sqlite3.Connection,
    spec: Union[str, Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> Job:
    """Validate and insert a new pending job.

    Raises InvalidSpec before touching the store, DuplicateId when the id
    is already taken (the existing record is left as it is).
    """
    data = parse_payload(spec) if isinstance(spec, str) else dict(spec)
    job = build_job(data, now=now)
    insert_if_absent(conn, job)
    console.log(f"Job enqueued: {escape(job.id)} (priority={job.priority}, run_at={job.run_at})")
    return job
