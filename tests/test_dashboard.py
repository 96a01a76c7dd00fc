from urllib.parse import quote

import pytest

from queuectl.dashboard import create_app
from queuectl.db import get_connection
from queuectl.enqueue import enqueue_job


@pytest.fixture
def client(home):
    app = create_app(home)
    app.config["TESTING"] = True
    return app.test_client()


def _make_dead(job_id):
    conn = get_connection()
    enqueue_job(conn, {"id": job_id, "command": "false"})
    conn.execute("UPDATE jobs SET state='dead', attempts=3, error='boom' WHERE id=?", (job_id,))
    conn.commit()
    conn.close()


def test_index_serves_the_page(client):
    res = client.get("/")
    assert res.status_code == 200
    assert b"Dead Letter Queue" in res.data


def test_stats(client):
    _make_dead("d1")
    data = client.get("/api/stats").get_json()
    assert data["counts"]["dead"] == 1
    assert data["counts"]["pending"] == 0
    assert data["pool"]["running"] is False
    assert [j["id"] for j in data["dlq"]] == ["d1"]


def test_jobs_filter(client):
    conn = get_connection()
    enqueue_job(conn, {"id": "p1", "command": "true"})
    conn.close()
    data = client.get("/api/jobs?state=pending").get_json()
    assert data["count"] == 1
    assert data["jobs"][0]["id"] == "p1"
    assert client.get("/api/jobs?state=weird").status_code == 400


def test_log_endpoint(client):
    _make_dead("d1")
    data = client.get("/api/jobs/d1/log").get_json()
    assert data == {"id": "d1", "state": "dead", "output": "", "error": "boom"}
    assert client.get("/api/jobs/ghost/log").status_code == 404


def test_dlq_retry(client):
    _make_dead("d1")
    res = client.post("/api/dlq/retry/d1")
    assert res.status_code == 200
    assert res.get_json()["success"] is True
    assert client.post("/api/dlq/retry/d1").status_code == 404
    assert client.post("/api/dlq/retry/ghost").status_code == 404
    assert client.get("/api/stats").get_json()["counts"]["pending"] == 1


def test_page_builds_dlq_rows_without_inline_handlers(client):
    page = client.get("/").get_data(as_text=True)
    assert "onclick=" not in page
    assert "innerHTML" not in page
    assert "button.dataset.id = j.id" in page
    assert "encodeURIComponent(id)" in page


def test_hostile_job_id_is_served_as_data_and_retryable(client):
    nasty = "x'-alert(1)-'/<b>"
    _make_dead(nasty)
    data = client.get("/api/stats").get_json()
    assert [j["id"] for j in data["dlq"]] == [nasty]

    res = client.post("/api/dlq/retry/" + quote(nasty, safe=""))
    assert res.status_code == 200
    assert client.get("/api/jobs/" + quote(nasty, safe="") + "/log").get_json()["state"] == "pending"
