from __future__ import annotations
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..db import get_connection
from ..store import dlq_list as _dlq_list, requeue_dead
from ..util.time import display
from .list_jobs import _short

console = Console()


def dlq_list():
    conn = get_connection()
    try:
        jobs = _dlq_list(conn)
    finally:
        conn.close()

    if not jobs:
        console.print("Dead Letter Queue is empty.")
        return

    table = Table(title="Dead Letter Queue (DLQ)")
    table.add_column("id")
    table.add_column("command")
    table.add_column("attempts", justify="right")
    table.add_column("failed_at")
    table.add_column("error")

    for j in jobs:
        table.add_row(escape(j.id), _short(j.command, 40), str(j.attempts), display(j.updated_at), _short(j.error))

    console.print(table)


def dlq_retry(job_id: str):
    """Requeue a dead job. NotFound propagates to the caller."""
    conn = get_connection()
    try:
        requeue_dead(conn, job_id)
    finally:
        conn.close()
    console.print(f"[green]Job {escape(job_id)} moved from DLQ back to the pending queue[/]")
