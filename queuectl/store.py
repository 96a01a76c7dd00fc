"""Job record store on top of SQLite.

Every state transition is a single conditional UPDATE, so two workers
(threads or processes, each with its own connection) can never both move
the same row out of ``pending``. Connectivity problems surface as
:class:`StoreUnavailable`; callers decide whether to back off or give up.
"""
from __future__ import annotations
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from .constants import DEFAULTS, JobState
from .errors import DuplicateId, NotFound, StoreUnavailable
from .models import Job, JobUpdate
from .util.time import to_db, utcnow


@contextmanager
def _guard(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as e:
        raise StoreUnavailable(f"{action}: {e}") from e


@contextmanager
def _immediate(conn: sqlite3.Connection) -> Iterator[None]:
    # Take the write lock up front so the statement never runs on a stale snapshot
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def _stamp(now: Optional[datetime]) -> str:
    return to_db(now or utcnow())


# -----------------------
# Claim
# -----------------------
_CLAIM_SQL = """
UPDATE jobs
SET state = :processing, updated_at = :now
WHERE id = (
    SELECT id FROM jobs
    WHERE (state = :pending AND run_at <= :now)
       OR (
            :stale_after > 0 AND state = :processing
            AND julianday(updated_at)
                + (COALESCE(timeout, :job_timeout) / 1000.0 + :stale_after) / 86400.0
                <= julianday(:now)
       )
    ORDER BY priority DESC, created_at ASC, rowid ASC
    LIMIT 1
)
RETURNING *
"""


def claim_next(
    conn: sqlite3.Connection,
    now: Optional[datetime] = None,
    stale_after: int = 0,
    job_timeout: int = int(DEFAULTS["job_timeout"]),
) -> Optional[Job]:
    """Atomically claim the next eligible job, or return None.

    Eligible: pending with run_at <= now, highest priority first, then
    earliest created_at. With ``stale_after`` > 0, a processing job is
    eligible again once its execution bound (its own timeout, else
    ``job_timeout`` ms) plus ``stale_after`` seconds have passed since it
    was claimed, so a command that is still running is never handed out
    twice.
    """
    now = now or utcnow()
    with _guard("claim"), _immediate(conn):
        rows = conn.execute(
            _CLAIM_SQL,
            {
                "processing": JobState.PROCESSING.value,
                "pending": JobState.PENDING.value,
                "now": to_db(now),
                "stale_after": stale_after,
                "job_timeout": job_timeout,
            },
        ).fetchall()
    return Job.from_row(rows[0]) if rows else None


# -----------------------
# Outcome persistence
# -----------------------
def apply_update(conn: sqlite3.Connection, job: Job, update: JobUpdate, now: Optional[datetime] = None) -> bool:
    """Persist a resolved outcome for a job this worker claimed.

    Applies only while the row still carries our claim (state processing,
    updated_at as stamped by claim_next). Returns False when the job was
    reclaimed by someone else in the meantime.
    """
    with _guard(f"persist {job.id}"), conn:
        cur = conn.execute(
            """
            UPDATE jobs
            SET state=?, attempts=?, output=?, error=?, run_at=COALESCE(?, run_at), updated_at=?
            WHERE id=? AND state=? AND updated_at=?
            """,
            (
                update.state, update.attempts, update.output, update.error, update.run_at,
                _stamp(now), job.id, JobState.PROCESSING.value, job.updated_at,
            ),
        )
    return cur.rowcount == 1


# -----------------------
# Creation / manual transitions
# -----------------------
def insert_if_absent(conn: sqlite3.Connection, job: Job) -> None:
    with _guard(f"insert {job.id}"), conn:
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO jobs(id, command, state, attempts, max_retries, priority, timeout,
                                       run_at, output, error, created_at, updated_at)
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id, job.command, job.state, job.attempts, job.max_retries, job.priority, job.timeout,
                job.run_at, job.output, job.error, job.created_at, job.updated_at,
            ),
        )
    if cur.rowcount == 0:
        raise DuplicateId(job.id)


def requeue_dead(conn: sqlite3.Connection, job_id: str, now: Optional[datetime] = None) -> Job:
    """Move a dead job back to pending, attempts reset, eligible immediately."""
    stamp = _stamp(now)
    with _guard(f"requeue {job_id}"), conn:
        rows = conn.execute(
            """
            UPDATE jobs SET state=?, attempts=0, run_at=?, updated_at=?
            WHERE id=? AND state=?
            RETURNING *
            """,
            (JobState.PENDING.value, stamp, stamp, job_id, JobState.DEAD.value),
        ).fetchall()
    if not rows:
        raise NotFound(job_id, "the DLQ")
    return Job.from_row(rows[0])


# -----------------------
# Queries
# -----------------------
def get(conn: sqlite3.Connection, job_id: str) -> Job:
    with _guard(f"get {job_id}"):
        row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
    if row is None:
        raise NotFound(job_id)
    return Job.from_row(row)


def query(conn: sqlite3.Connection, state: Optional[str] = None) -> List[Job]:
    with _guard("query"):
        if state:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE state=? ORDER BY created_at ASC, rowid ASC", (state,)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM jobs ORDER BY created_at ASC, rowid ASC").fetchall()
    return [Job.from_row(r) for r in rows]


def dlq_list(conn: sqlite3.Connection, limit: Optional[int] = None) -> List[Job]:
    sql = "SELECT * FROM jobs WHERE state=? ORDER BY updated_at DESC"
    params: tuple = (JobState.DEAD.value,)
    if limit is not None:
        sql += " LIMIT ?"
        params += (limit,)
    with _guard("dlq list"):
        rows = conn.execute(sql, params).fetchall()
    return [Job.from_row(r) for r in rows]


def count_by_state(conn: sqlite3.Connection) -> Dict[str, int]:
    counts = {s.value: 0 for s in JobState}
    with _guard("count"):
        for row in conn.execute("SELECT state, COUNT(*) AS c FROM jobs GROUP BY state"):
            counts[row["state"]] = row["c"]
    return counts


def longest_processing_timeout(conn: sqlite3.Connection) -> Optional[int]:
    """Largest per-job timeout (ms) among jobs currently being executed."""
    with _guard("count"):
        row = conn.execute("SELECT MAX(timeout) FROM jobs WHERE state=?", (JobState.PROCESSING.value,)).fetchone()
    return row[0]


# -----------------------
# Worker heartbeats
# -----------------------
def heartbeat(conn: sqlite3.Connection, worker_id: str, hostname: str, pid: int) -> None:
    now_iso = _stamp(None)
    with _guard("heartbeat"), conn:
        conn.execute(
            """
            INSERT INTO workers(id, pid, hostname, started_at, last_heartbeat_at)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET last_heartbeat_at=excluded.last_heartbeat_at
            """,
            (worker_id, pid, hostname, now_iso, now_iso),
        )


def remove_heartbeat(conn: sqlite3.Connection, worker_id: str) -> None:
    with _guard("heartbeat"), conn:
        conn.execute("DELETE FROM workers WHERE id=?", (worker_id,))


def recent_workers(conn: sqlite3.Connection, freshness_seconds: float, now: Optional[datetime] = None) -> List[sqlite3.Row]:
    cutoff = to_db((now or utcnow()) - timedelta(seconds=freshness_seconds))
    with _guard("workers"):
        return conn.execute(
            "SELECT * FROM workers WHERE last_heartbeat_at >= ? ORDER BY started_at",
            (cutoff,),
        ).fetchall()
