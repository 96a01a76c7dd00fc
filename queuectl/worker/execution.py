from __future__ import annotations
import signal
from dataclasses import dataclass
from typing import Callable, Optional

from ..config import RuntimeConfig
from ..models import Job
from .executor import ExecResult, run_command

Runner = Callable[..., ExecResult]


@dataclass(frozen=True)
class ExecutionResult:
    stdout: str
    stderr: str
    timed_out: bool = False
    failure_reason: Optional[str] = None
    timeout_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.failure_reason is None


def effective_timeout_ms(job: Job, config: RuntimeConfig) -> int:
    return job.timeout or config.job_timeout


def _signal_name(num: int) -> str:
    try:
        return signal.Signals(num).name
    except ValueError:
        return f"signal {num}"


def execute(job: Job, config: RuntimeConfig, runner: Runner = run_command) -> ExecutionResult:
    """Run a claimed job's command under its time bound.

    Only a non-zero exit, a signal or the timeout count as failure;
    output on stderr alone does not.
    """
    timeout_ms = effective_timeout_ms(job, config)
    try:
        res = runner(job.command, timeout=timeout_ms / 1000.0)
    except OSError as e:
        return ExecutionResult("", "", failure_reason=f"Command could not be started: {e}", timeout_ms=timeout_ms)

    stdout = res.stdout.strip()
    stderr = res.stderr.strip()

    if res.timed_out:
        reason = f"Command timed out after {timeout_ms}ms and was killed: {job.command}"
    elif res.returncode == 0:
        reason = None
    elif res.returncode is not None and res.returncode < 0:
        reason = f"Command terminated by {_signal_name(-res.returncode)}: {job.command}"
    else:
        reason = f"Command failed with exit code {res.returncode}: {job.command}"

    return ExecutionResult(
        stdout=stdout,
        stderr=stderr,
        timed_out=res.timed_out,
        failure_reason=reason,
        timeout_ms=timeout_ms,
    )
