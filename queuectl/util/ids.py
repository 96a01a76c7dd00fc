from __future__ import annotations
import os
import random
import socket


def make_worker_id(prefix: str = "worker", slot: int | None = None) -> str:
    host = socket.gethostname()
    pid = os.getpid()
    if slot is not None:
        return f"{prefix}{slot}-{host}-{pid}"
    return f"{prefix}-{host}-{pid}-{random.randint(1000, 9999)}"
