from __future__ import annotations
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import get_value, set_value, get_all, ensure_bootstrapped
from .errors import QueueError

app = typer.Typer(add_completion=False, help="queuectl — persistent background job queue")
console = Console()


@app.callback()
def _bootstrap() -> None:
    """Ensure DB is initialized before any command."""
    ensure_bootstrapped()


@contextmanager
def _rejections() -> Iterator[None]:
    # Queue errors are user-facing rejections: message + exit code 1, state untouched
    try:
        yield
    except QueueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        raise typer.Exit(code=1)


# ---------------------------
# config group
# ---------------------------
config_app = typer.Typer(help="Manage queuectl configuration")
app.add_typer(config_app, name="config")


@config_app.command("get")
def config_get(key: str = typer.Argument(..., help="Config key (e.g., max_retries)")):
    value = get_value(key)
    if value is None:
        console.print(f"[yellow]{escape(key)}[/] is not set")
        raise typer.Exit(code=1)
    console.print(f"{key} = {value}", markup=False)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="max_retries | backoff_base | job_timeout (ms) | stale_after (s)"),
    value: str = typer.Argument(..., help="Integer value (e.g., 3)"),
):
    with _rejections():
        outcome = set_value(key, value)
    console.print(f"[green]Config {outcome}:[/] {escape(key)} = {escape(value.strip())}")


@config_app.command("show")
def config_show():
    cfg = get_all()
    table = Table(title="queuectl config")
    table.add_column("key")
    table.add_column("value")
    for k, v in cfg.items():
        table.add_row(k, v)
    console.print(table)


# ---------------------------
# enqueue
# ---------------------------
@app.command("enqueue")
def enqueue(
    payload: Optional[str] = typer.Argument(None, help='Job JSON, e.g. \'{"id":"job1","command":"sleep 2"}\''),
    job_id: Optional[str] = typer.Option(None, "--id", "-i"),
    command: Optional[str] = typer.Option(None, "--cmd", "-c"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the job JSON from a file"),
    priority: Optional[int] = typer.Option(None, "--priority", "-p", help="Higher number runs first (default 0)"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", "-r"),
    timeout: Optional[int] = typer.Option(None, "--timeout", "-t", help="Execution time bound in ms"),
    run_at: Optional[str] = typer.Option(None, "--run-at", help="ISO timestamp, UTC unless an offset is given"),
    delay: Optional[int] = typer.Option(None, "--delay", help="Delay execution in seconds"),
):
    from .db import get_connection
    from .enqueue import enqueue_job, parse_payload

    with _rejections():
        if file:
            if not file.exists():
                console.print(f"[red]File not found[/]: {escape(str(file))}")
                raise typer.Exit(1)
            spec = parse_payload(file.read_text())
        elif payload:
            spec = parse_payload(payload)
        else:
            spec = {}

        overrides = {
            "id": job_id, "command": command, "priority": priority, "max_retries": max_retries,
            "timeout": timeout, "run_at": run_at, "delay": delay,
        }
        spec.update({k: v for k, v in overrides.items() if v is not None})
        if not spec:
            console.print("[red]Provide a job JSON, --file, or --id and --cmd.[/]")
            raise typer.Exit(1)

        conn = get_connection()
        try:
            job = enqueue_job(conn, spec)
        finally:
            conn.close()
    console.print(f"[green]Job enqueued successfully:[/] {escape(job.id)}")


# ---------------------------
# worker group
# ---------------------------
worker_app = typer.Typer(help="Manage workers")
app.add_typer(worker_app, name="worker")


@worker_app.command("start")
def worker_start(
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of worker processes"),
    shutdown_timeout: Optional[float] = typer.Option(
        None, "--shutdown-timeout", help="Seconds to wait for busy workers on stop before killing them"
    ),
):
    from .worker.supervisor import start_workers
    with _rejections():
        start_workers(count, shutdown_timeout=shutdown_timeout)


@worker_app.command("stop")
def worker_stop():
    from .worker.supervisor import request_stop
    outcome = request_stop()
    if outcome == "not-running":
        console.print("Workers are not running.")
    elif outcome == "already-stopping":
        console.print("Stop already requested; workers are finishing their current jobs.")
    else:
        console.print("[green]Stop signal sent.[/] Workers will finish their current job and exit.")


# ---------------------------
# status / list / log
# ---------------------------
@app.command("status")
def _status():
    from .commands.status import status
    with _rejections():
        status()


@app.command("list")
def _list(state: str = typer.Option("pending", "--state", help="Job state to filter")):
    from .commands.list_jobs import list_jobs
    with _rejections():
        if not list_jobs(state):
            raise typer.Exit(1)


@app.command("log")
def _log(job_id: str = typer.Argument(...)):
    from .commands.log import show_log
    with _rejections():
        show_log(job_id)


# ---------------------------
# dlq
# ---------------------------
dlq_app = typer.Typer(help="Dead Letter Queue commands")
app.add_typer(dlq_app, name="dlq")

@dlq_app.command("list")
def _dlq_list():
    from .commands.dlq import dlq_list
    with _rejections():
        dlq_list()

@dlq_app.command("retry")
def _dlq_retry(job_id: str = typer.Argument(...)):
    from .commands.dlq import dlq_retry
    with _rejections():
        dlq_retry(job_id)


# ---------------------------
# dashboard
# ---------------------------
@app.command("dashboard")
def _dashboard(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(3000, "--port"),
):
    from .dashboard import create_app
    console.log(f"Dashboard running on http://{host}:{port}")
    create_app().run(host=host, port=port)


if __name__ == "__main__":
    app()
