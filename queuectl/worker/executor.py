from __future__ import annotations
import os
import signal
import subprocess
from dataclasses import dataclass
from typing import Optional, Set

_POSIX = os.name != "nt"

# Commands currently running in this process
_running: Set[subprocess.Popen] = set()


@dataclass
class ExecResult:
    returncode: Optional[int]  # negative: killed by that signal (POSIX)
    stdout: str
    stderr: str
    timed_out: bool = False  # killed by us because the time bound expired


def _kill(proc: subprocess.Popen) -> None:
    # The command runs in its own session; kill the whole group so that
    # grandchildren (e.g. `sleep` under the shell) release the pipes too.
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        proc.kill()


def kill_running() -> int:
    """Kill every command this process is running. Returns how many."""
    procs = list(_running)
    for proc in procs:
        _kill(proc)
    return len(procs)


def run_command(cmd: str, timeout: float | None = None) -> ExecResult:
    """Run ``cmd`` through the shell, capturing stdout/stderr.

    When ``timeout`` (seconds) expires the process group is killed and
    whatever output was produced so far is returned with ``timed_out``.
    Raises OSError when the shell itself cannot be started.
    """
    proc = subprocess.Popen(
        cmd,
        shell=True,
        executable="/bin/bash" if _POSIX and os.path.exists("/bin/bash") else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
        start_new_session=_POSIX,
    )
    _running.add(proc)
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill(proc)
        stdout, stderr = proc.communicate()
        return ExecResult(proc.returncode, stdout or "", stderr or "", timed_out=True)
    finally:
        _running.discard(proc)
    return ExecResult(
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
    )
