from __future__ import annotations
import sqlite3
from dataclasses import dataclass
from typing import Optional

from .constants import JobState


@dataclass
class Job:
    id: str
    command: str
    state: str = JobState.PENDING.value
    attempts: int = 0
    max_retries: Optional[int] = None  # None -> RuntimeConfig.max_retries
    priority: int = 0
    timeout: Optional[int] = None  # ms; None -> RuntimeConfig.job_timeout
    run_at: str = ""
    output: str = ""
    error: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Job":
        return cls(**{k: row[k] for k in row.keys()})

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass(frozen=True)
class JobUpdate:
    """Next persisted state of a job after one execution attempt."""

    state: str
    attempts: int
    output: str
    error: str
    run_at: Optional[str] = None  # None leaves run_at untouched
