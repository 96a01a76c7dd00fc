import pytest

from conftest import T0
from queuectl.enqueue import enqueue_job
from queuectl.errors import DuplicateId, InvalidSpec
from queuectl.store import count_by_state, get
from queuectl.util.time import to_db
from datetime import timedelta


def test_basic_enqueue(conn):
    enqueue_job(conn, '{"id":"t1","command":"echo hi"}')
    row = conn.execute("SELECT state FROM jobs WHERE id='t1'").fetchone()
    assert row["state"] == "pending"


def test_defaults(conn):
    job = enqueue_job(conn, {"id": "t1", "command": "echo hi"}, now=T0)
    stored = get(conn, "t1")
    assert stored == job
    assert stored.attempts == 0
    assert stored.priority == 0
    assert stored.max_retries is None
    assert stored.timeout is None
    assert stored.run_at == to_db(T0)
    assert stored.created_at == stored.updated_at == to_db(T0)


def test_overrides(conn):
    job = enqueue_job(
        conn,
        {"id": "t1", "command": "echo hi", "priority": 7, "max_retries": 5, "timeout": 1500},
    )
    assert (job.priority, job.max_retries, job.timeout) == (7, 5, 1500)


def test_duplicate_id_leaves_existing_record_untouched(conn):
    enqueue_job(conn, {"id": "dup", "command": "echo first", "priority": 1}, now=T0)
    with pytest.raises(DuplicateId):
        enqueue_job(conn, {"id": "dup", "command": "echo second", "priority": 9})
    job = get(conn, "dup")
    assert job.command == "echo first"
    assert job.priority == 1
    assert job.created_at == to_db(T0)


@pytest.mark.parametrize(
    "spec",
    [
        {"command": "echo hi"},
        {"id": "x"},
        {"id": "", "command": "echo hi"},
        {"id": "x", "command": "   "},
        {"id": "x", "command": "echo", "priority": "high"},
        {"id": "x", "command": "echo", "max_retries": -1},
        {"id": "x", "command": "echo", "timeout": 0},
        {"id": "x", "command": "echo", "run_at": "tomorrow"},
        {"id": "x", "command": "echo", "run_at": "2026-01-01T00:00:00", "delay": 5},
    ],
)
def test_invalid_spec_rejected_before_any_write(conn, spec):
    with pytest.raises(InvalidSpec):
        enqueue_job(conn, spec)
    assert sum(count_by_state(conn).values()) == 0


def test_invalid_json(conn):
    with pytest.raises(InvalidSpec):
        enqueue_job(conn, "{not json")
    with pytest.raises(InvalidSpec):
        enqueue_job(conn, "[1, 2]")


def test_delay_schedules_in_the_future(conn):
    job = enqueue_job(conn, {"id": "later", "command": "true", "delay": 30}, now=T0)
    assert job.run_at == to_db(T0 + timedelta(seconds=30))


def test_run_at_naive_is_utc_and_z_suffix_accepted(conn):
    a = enqueue_job(conn, {"id": "a", "command": "true", "run_at": "2026-03-01T10:00:00"})
    b = enqueue_job(conn, {"id": "b", "command": "true", "run_at": "2026-03-01T10:00:00Z"})
    c = enqueue_job(conn, {"id": "c", "command": "true", "run_at": "2026-03-01T12:00:00+02:00"})
    assert a.run_at == b.run_at == c.run_at == "2026-03-01 10:00:00.000000"
