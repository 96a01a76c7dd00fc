from __future__ import annotations
import sqlite3
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import validate
from ..constants import DEFAULTS, HEARTBEAT_FRESHNESS_SECONDS
from ..db import get_config, get_connection
from ..errors import InvalidConfig
from ..store import count_by_state, longest_processing_timeout, recent_workers
from ..util.time import from_db, utcnow
from ..worker.supervisor import pool_status

console = Console()


def _freshness_seconds(conn: sqlite3.Connection) -> float:
    # A busy worker beats on claim and again after the job; allow for the
    # longest execution bound in between.
    try:
        timeout_ms = validate("job_timeout", get_config(conn, "job_timeout", DEFAULTS["job_timeout"]))
    except InvalidConfig:
        timeout_ms = int(DEFAULTS["job_timeout"])
    timeout_ms = max(timeout_ms, longest_processing_timeout(conn) or 0)
    return HEARTBEAT_FRESHNESS_SECONDS + timeout_ms / 1000


def collect_status(conn: sqlite3.Connection, home: Optional[Path] = None) -> dict:
    now = utcnow()
    workers = [
        {
            "id": w["id"],
            "pid": w["pid"],
            "last_seen_s": int((now - from_db(w["last_heartbeat_at"])).total_seconds()),
        }
        for w in recent_workers(conn, _freshness_seconds(conn), now=now)
    ]
    return {
        "counts": count_by_state(conn),
        "pool": pool_status(home),
        "workers": workers,
    }


def status():
    conn = get_connection()
    try:
        info = collect_status(conn)
    finally:
        conn.close()

    # display jobs summary
    job_table = Table(title="Job Summary")
    job_table.add_column("state")
    job_table.add_column("count", justify="right")
    for state, count in info["counts"].items():
        job_table.add_row(state, str(count))
    console.print(job_table)

    pool = info["pool"]
    if pool["running"]:
        suffix = " (stopping)" if pool["stopping"] else ""
        console.print(f"[green]Workers are ACTIVE[/] (supervisor PID {pool['pid']}){suffix}")
    else:
        console.print("[yellow]Workers are INACTIVE[/]")

    if info["workers"]:
        worker_table = Table(title="Workers (active heartbeat)")
        worker_table.add_column("id")
        worker_table.add_column("pid", justify="right")
        worker_table.add_column("last seen (sec ago)", justify="right")
        for w in info["workers"]:
            worker_table.add_row(escape(w["id"]), str(w["pid"]), str(w["last_seen_s"]))
        console.print(worker_table)
