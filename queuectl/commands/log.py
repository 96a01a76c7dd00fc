from __future__ import annotations
from rich.console import Console
from rich.markup import escape
from rich.rule import Rule

from ..db import get_connection
from ..store import get

console = Console()


def show_log(job_id: str):
    conn = get_connection()
    try:
        job = get(conn, job_id)
    finally:
        conn.close()

    console.print(Rule(escape(f"Logs for job {job.id} [{job.state}]")))
    console.print("[bold]STDOUT[/]")
    console.print(job.output or "(No standard output recorded)", markup=False)
    console.print("[bold]STDERR / ERROR[/]")
    console.print(job.error or "(No error output recorded)", markup=False)
