from __future__ import annotations
import os
import signal
import socket
import sqlite3
import time
from datetime import datetime
from typing import Callable, Optional

from rich.console import Console
from rich.markup import escape

from ..config import RuntimeConfig, load_runtime_config
from ..constants import POLL_INTERVAL_SECONDS, JobState
from ..db import get_connection
from ..errors import StoreUnavailable
from ..models import Job, JobUpdate
from ..store import apply_update, claim_next, heartbeat, remove_heartbeat
from ..util.ids import make_worker_id
from ..util.time import display, utcnow
from .execution import ExecutionResult, effective_timeout_ms, execute
from .executor import kill_running, run_command
from .resolver import effective_max_retries, resolve

console = Console()

# Idle sleeps are sliced so a stop request is noticed quickly
_SLEEP_SLICE = 0.25


class Worker:
    """One claim -> execute -> resolve loop.

    Idle until a claim succeeds, busy until the outcome is persisted.
    The stop callback is only consulted while idle, so a running job is
    always finished and recorded before the loop exits.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: RuntimeConfig,
        should_stop: Callable[[], bool],
        worker_id: Optional[str] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        runner: Callable = run_command,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.conn = conn
        self.config = config
        self.should_stop = should_stop
        self.worker_id = worker_id or make_worker_id()
        self.poll_interval = poll_interval
        self._runner = runner
        self._clock = clock
        self._sleep = sleep
        self._hostname = socket.gethostname()
        self._pid = os.getpid()
        self._tag = escape(f"[{self.worker_id}]")

    # -----------------------
    # Loop
    # -----------------------
    def run(self) -> None:
        console.log(f"[bold cyan]{self._tag} started[/]")
        try:
            while not self.should_stop():
                self._beat()
                if not self.poll_once():
                    self._idle()
            console.log(f"{self._tag} stop requested → exiting while idle")
        finally:
            try:
                remove_heartbeat(self.conn, self.worker_id)
            except StoreUnavailable:
                pass
            console.log(f"{self._tag} exiting")

    def poll_once(self) -> bool:
        """Claim one job and process it. Returns False when nothing was claimed."""
        try:
            job = claim_next(
                self.conn,
                now=self._clock(),
                stale_after=self.config.stale_after,
                job_timeout=self.config.job_timeout,
            )
        except StoreUnavailable as e:
            console.log(f"[yellow]{self._tag} store unavailable, backing off: {escape(str(e))}[/]")
            return False
        if job is None:
            return False
        self.process(job)
        return True

    def process(self, job: Job) -> JobUpdate:
        self._beat()
        console.log(
            f"{self._tag} Picked job: {escape(job.id)} | cmd: {escape(job.command)} "
            f"(priority={job.priority}, timeout={effective_timeout_ms(job, self.config)}ms)"
        )
        result = execute(job, self.config, runner=self._runner)
        update = resolve(job, result, self.config, now=self._clock())
        self._report(job, result, update)
        self._persist(job, update)
        return update

    # -----------------------
    # Helpers
    # -----------------------
    def _persist(self, job: Job, update: JobUpdate) -> bool:
        # The outcome must land; keep retrying while the store is down
        while True:
            try:
                applied = apply_update(self.conn, job, update, now=self._clock())
                break
            except StoreUnavailable as e:
                console.log(f"[yellow]{self._tag} could not persist {escape(job.id)}, retrying: {escape(str(e))}[/]")
                self._sleep(self.poll_interval)
        if not applied:
            console.log(f"[yellow]{self._tag} {escape(job.id)} was reclaimed by another worker; outcome dropped[/]")
        return applied

    def _report(self, job: Job, result: ExecutionResult, update: JobUpdate) -> None:
        if update.state == JobState.COMPLETED.value:
            if result.stderr:
                console.log(f"{self._tag} {escape(job.id)} stderr: {escape(result.stderr)}")
            console.log(f"[green]{self._tag} completed: {escape(job.id)}[/]")
            return
        if result.timed_out:
            console.log(f"[red]{self._tag} {escape(job.id)} TIMED OUT after {result.timeout_ms}ms[/]")
        else:
            console.log(f"[red]{self._tag} {escape(job.id)} FAILED: {escape(result.failure_reason)}[/]")
        max_retries = effective_max_retries(job, self.config)
        if update.state == JobState.DEAD.value:
            console.log(f"{self._tag} DLQ: {escape(job.id)} (attempts {update.attempts}/{max_retries})")
        else:
            console.log(
                f"{self._tag} retrying {escape(job.id)} (attempt {update.attempts}/{max_retries}); "
                f"next run at {display(update.run_at)}"
            )

    def _beat(self) -> None:
        try:
            heartbeat(self.conn, self.worker_id, self._hostname, self._pid)
        except StoreUnavailable as e:
            console.log(f"[yellow]{self._tag} heartbeat failed: {escape(str(e))}[/]")

    def _idle(self) -> None:
        remaining = self.poll_interval
        while remaining > 0 and not self.should_stop():
            step = min(_SLEEP_SLICE, remaining)
            self._sleep(step)
            remaining -= step


# -----------------------
# Process entry point
# -----------------------
def worker_main(
    db_path: str,
    stop_flag_path: str,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    slot: Optional[int] = None,
) -> None:
    """Body of one pool process. Runs until the stop flag appears or SIGTERM.

    SIGTERM after a stop was requested also kills the command in flight,
    which is how the pool ends a drain that outlived its shutdown timeout.
    """
    stop_signalled = False

    def _on_term(signum, frame):
        nonlocal stop_signalled
        # Once a stop is already under way, SIGTERM gives up on the running
        # command; the failed attempt is still resolved and persisted.
        if stop_signalled or os.path.exists(stop_flag_path):
            kill_running()
        stop_signalled = True

    # Ctrl+C reaches the whole process group; only the supervisor reacts to it
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, _on_term)

    worker_id = make_worker_id(slot=slot)
    conn = get_connection(db_path)
    try:
        config = load_runtime_config(conn, log_prefix=worker_id)
        Worker(
            conn,
            config,
            should_stop=lambda: stop_signalled or os.path.exists(stop_flag_path),
            worker_id=worker_id,
            poll_interval=poll_interval,
        ).run()
    finally:
        conn.close()
