from __future__ import annotations
import os
import signal
import threading
import time
from multiprocessing import Process
from pathlib import Path
from typing import Dict, Optional

from rich.console import Console

from ..constants import (
    ABORT_GRACE_SECONDS,
    DB_FILENAME,
    PID_FILENAME,
    POLL_INTERVAL_SECONDS,
    STOP_FLAG_FILENAME,
    SUPERVISOR_TICK_SECONDS,
)
from ..db import app_dir, init_db
from ..errors import PoolAlreadyRunning
from .process import worker_main

console = Console()


def _home(home: Optional[Path]) -> Path:
    return Path(home) if home else app_dir()


def stop_flag_path(home: Optional[Path] = None) -> Path:
    return _home(home) / STOP_FLAG_FILENAME


def pid_file_path(home: Optional[Path] = None) -> Path:
    return _home(home) / PID_FILENAME


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def read_supervisor_pid(home: Optional[Path] = None) -> Optional[int]:
    """PID of the live supervisor, or None. A stale PID file is removed."""
    path = pid_file_path(home)
    try:
        pid = int(path.read_text().strip())
    except FileNotFoundError:
        return None
    except ValueError:
        _unlink(path)
        return None
    if not _pid_alive(pid):
        console.log(f"Removing stale PID file (process {pid} is gone)")
        _unlink(path)
        return None
    return pid


def pool_status(home: Optional[Path] = None) -> dict:
    pid = read_supervisor_pid(home)
    return {
        "running": pid is not None,
        "pid": pid,
        "stopping": pid is not None and stop_flag_path(home).exists(),
    }


class WorkerPool:
    """Fixed-size set of worker processes.

    Children share nothing but the database. The pool replaces any child
    that exits while no stop was requested, and stops cooperatively
    through the stop flag file.
    """

    def __init__(
        self,
        count: int,
        home: Optional[Path] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        shutdown_timeout: Optional[float] = None,
    ):
        if count < 1:
            raise ValueError("count must be >= 1")
        self.count = count
        self.home = _home(home)
        self.db_path = str(self.home / DB_FILENAME)
        self.poll_interval = poll_interval
        self.shutdown_timeout = shutdown_timeout
        self.restarts = 0
        self._procs: Dict[int, Process] = {}
        self._running = False

    @property
    def stop_flag(self) -> Path:
        return stop_flag_path(self.home)

    @property
    def running(self) -> bool:
        return self._running

    def alive(self) -> int:
        return sum(1 for p in self._procs.values() if p.is_alive())

    def start(self) -> None:
        if self._running:
            return
        owner = read_supervisor_pid(self.home)
        if owner is not None:
            raise PoolAlreadyRunning(owner)

        init_db(self.db_path)
        # clear any previous stop flag
        _unlink(self.stop_flag)
        pid_file_path(self.home).write_text(str(os.getpid()))

        for slot in range(1, self.count + 1):
            self._spawn(slot)
        self._running = True
        console.log(f"Supervisor {os.getpid()} started {self.count} workers")

    def _spawn(self, slot: int) -> Process:
        p = Process(
            target=worker_main,
            args=(self.db_path, str(self.stop_flag), self.poll_interval, slot),
            name=f"queuectl-worker-{slot}",
            daemon=False,
        )
        p.start()
        self._procs[slot] = p
        return p

    def stop_requested(self) -> bool:
        return self.stop_flag.exists()

    def check(self) -> int:
        """Replace children that died unexpectedly. Returns how many were respawned."""
        if not self._running or self.stop_requested():
            return 0
        replaced = 0
        for slot, p in list(self._procs.items()):
            if p.is_alive():
                continue
            p.join()
            console.log(f"[yellow]Worker slot {slot} (pid {p.pid}) died with exit code {p.exitcode}; forking a new one[/]")
            self._spawn(slot)
            self.restarts += 1
            replaced += 1
        return replaced

    def supervise(self, tick: float = SUPERVISOR_TICK_SECONDS) -> None:
        """Keep the pool at size until a stop is requested, then drain it."""
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, lambda signum, frame: self.request_stop())
        try:
            while not self.stop_requested():
                self.check()
                time.sleep(tick)
            console.log("Supervisor: stop flag detected → draining workers")
        except KeyboardInterrupt:
            console.log("Supervisor: CTRL+C received → graceful stop")
        finally:
            self.stop()

    def request_stop(self) -> None:
        self.stop_flag.write_text("stop")

    def stop(self) -> bool:
        """Drain the pool. Returns False when it was not running (no-op)."""
        if not self._running:
            return False
        self.request_stop()

        deadline = None if self.shutdown_timeout is None else time.monotonic() + self.shutdown_timeout
        for p in self._procs.values():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            p.join(remaining)

        for slot, p in self._procs.items():
            if p.is_alive():
                console.log(f"[red]Worker slot {slot} (pid {p.pid}) still busy after {self.shutdown_timeout}s; aborting its job[/]")
                p.terminate()
                p.join(ABORT_GRACE_SECONDS)
            if p.is_alive():
                console.log(f"[red]Worker slot {slot} (pid {p.pid}) did not exit; killing it[/]")
                p.kill()
                p.join()

        self._procs.clear()
        self._running = False
        _unlink(self.stop_flag)
        try:
            if pid_file_path(self.home).read_text().strip() == str(os.getpid()):
                _unlink(pid_file_path(self.home))
        except FileNotFoundError:
            pass
        console.log("Supervisor: all workers stopped")
        return True


def start_workers(count: int, shutdown_timeout: Optional[float] = None) -> None:
    pool = WorkerPool(count, shutdown_timeout=shutdown_timeout)
    pool.start()
    console.log("Press CTRL+C or run `queuectl worker stop` to stop.")
    pool.supervise()


def request_stop(home: Optional[Path] = None) -> str:
    """Ask a running supervisor (another process) to drain its pool.

    Returns "stopping", "already-stopping" or "not-running"; none of them
    is an error.
    """
    pid = read_supervisor_pid(home)
    if pid is None:
        return "not-running"
    flag = stop_flag_path(home)
    if flag.exists():
        return "already-stopping"
    # Signal workers by creating the stop flag file
    flag.write_text("stop")
    console.log(f"Requested workers of supervisor {pid} to stop (flag written)")
    return "stopping"
