from __future__ import annotations
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..constants import JobState
from ..db import get_connection
from ..store import query
from ..util.time import display

console = Console()


def _short(text: str, width: int = 60) -> str:
    text = (text or "").replace("\n", " ")
    text = text if len(text) <= width else text[: width - 1] + "…"
    return escape(text)


def list_jobs(state: str) -> bool:
    valid = [s.value for s in JobState]
    if state not in valid:
        console.print(f"[red]Invalid state {escape(repr(state))}. Must be one of: {', '.join(valid)}[/]")
        return False

    conn = get_connection()
    try:
        jobs = query(conn, state)
    finally:
        conn.close()

    if not jobs:
        console.print(f"No jobs found with state: {escape(state)}")
        return True

    table = Table(title=f"Jobs in state: {state}")
    table.add_column("id")
    table.add_column("command")
    table.add_column("priority", justify="right")
    table.add_column("attempts", justify="right")
    table.add_column("run_at")
    table.add_column("error")

    for j in jobs:
        table.add_row(escape(j.id), _short(j.command, 40), str(j.priority), str(j.attempts), display(j.run_at), _short(j.error))

    console.print(table)
    return True
