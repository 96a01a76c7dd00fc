from enum import Enum

class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD = "dead"


DEFAULTS = {
"max_retries": "3",
"backoff_base": "2",
"job_timeout": "30000",
"stale_after": "0",
}


APP_DIRNAME = ".queuectl"
DB_FILENAME = "queue.db"
PID_FILENAME = "queuectl.pid"
STOP_FLAG_FILENAME = "stop.flag"

POLL_INTERVAL_SECONDS = 2.0
SUPERVISOR_TICK_SECONDS = 0.5
HEARTBEAT_FRESHNESS_SECONDS = 10

# After the shutdown timeout, how long an aborted worker gets to record its job
ABORT_GRACE_SECONDS = 10
