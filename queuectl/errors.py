from __future__ import annotations


class QueueError(Exception):
    """Base class for every rejection the queue reports to its callers."""


class DuplicateId(QueueError):
    def __init__(self, job_id: str):
        super().__init__(f"A job with ID {job_id!r} already exists.")
        self.job_id = job_id


class InvalidSpec(QueueError):
    pass


class NotFound(QueueError):
    def __init__(self, job_id: str, where: str = "queue"):
        super().__init__(f"Job {job_id!r} not found in {where}.")
        self.job_id = job_id


class InvalidConfig(QueueError):
    pass


class StoreUnavailable(QueueError):
    pass


class PoolAlreadyRunning(QueueError):
    def __init__(self, pid: int):
        super().__init__(f"Workers already running (supervisor PID {pid}).")
        self.pid = pid
