from __future__ import annotations
import functools
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, render_template_string, request
from rich.console import Console
from rich.markup import escape

from .commands.status import collect_status
from .constants import DB_FILENAME, JobState
from .db import app_dir, get_connection, init_db
from .errors import NotFound, QueueError
from .store import dlq_list, get, query, requeue_dead

console = Console()

_PAGE = """
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>queuectl dashboard</title>
  <style>
    body { font-family: sans-serif; margin: 2rem; background: #f9fafb; }
    .cards { display: flex; gap: 1rem; margin-bottom: 2rem; }
    .card { background: white; padding: 1rem 1.5rem; border-radius: .5rem; min-width: 8rem; }
    table { background: white; border-collapse: collapse; width: 100%; }
    td, th { padding: .4rem .8rem; border-bottom: 1px solid #e5e7eb; text-align: left; }
  </style>
</head>
<body>
  <h1>queuectl</h1>
  <p id="pool">–</p>
  <div class="cards" id="cards"></div>
  <h2>Dead Letter Queue</h2>
  <table>
    <thead><tr><th>id</th><th>command</th><th>attempts</th><th>error</th><th></th></tr></thead>
    <tbody id="dlq"></tbody>
  </table>
  <script>
  function cell(row, text) { const td = row.insertCell(); td.textContent = text ?? ''; return td; }
  async function refresh() {
    const data = await (await fetch('/api/stats')).json();
    document.getElementById('pool').textContent =
      data.pool.running ? `Workers ACTIVE (supervisor PID ${data.pool.pid})` : 'Workers INACTIVE';
    const cards = document.getElementById('cards');
    cards.replaceChildren(...Object.entries(data.counts).map(([k, v]) => {
      const card = document.createElement('div');
      card.className = 'card';
      const label = document.createElement('div');
      label.textContent = k;
      const count = document.createElement('h2');
      count.textContent = v;
      card.append(label, count);
      return card;
    }));
    const dlq = document.getElementById('dlq');
    dlq.replaceChildren();
    if (data.dlq.length === 0) {
      cell(dlq.insertRow(), 'DLQ empty.').colSpan = 5;
      return;
    }
    for (const j of data.dlq) {
      const row = dlq.insertRow();
      cell(row, j.id);
      cell(row, j.command);
      cell(row, j.attempts);
      cell(row, j.error);
      const button = document.createElement('button');
      button.textContent = 'Retry';
      button.dataset.id = j.id;
      button.addEventListener('click', () => retryJob(button.dataset.id));
      row.insertCell().append(button);
    }
  }
  async function retryJob(id) {
    const res = await fetch(`/api/dlq/retry/${encodeURIComponent(id)}`, { method: 'POST' });
    if (!res.ok) alert((await res.json()).error);
    refresh();
  }
  refresh();
  setInterval(refresh, 5000);
  </script>
</body>
</html>
"""


def create_app(home: Optional[Path] = None) -> Flask:
    home = Path(home) if home else app_dir()
    path = str(home / DB_FILENAME)
    init_db(path)
    app = Flask(__name__)

    def with_conn(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            conn = get_connection(path)
            try:
                return func(conn, *args, **kwargs)
            except NotFound as e:
                return jsonify({"error": str(e)}), 404
            except QueueError as e:
                console.log(f"[red]API error: {escape(str(e))}[/]")
                return jsonify({"error": str(e)}), 400
            finally:
                conn.close()
        return wrapper

    @app.route("/")
    def index():
        return render_template_string(_PAGE)

    @app.route("/api/stats")
    @with_conn
    def stats(conn):
        info = collect_status(conn, home=home)
        info["dlq"] = [j.to_dict() for j in dlq_list(conn, limit=50)]
        return jsonify(info)

    @app.route("/api/jobs")
    @with_conn
    def jobs(conn):
        state = request.args.get("state")
        if state and state not in {s.value for s in JobState}:
            return jsonify({"error": f"Invalid state {state!r}"}), 400
        found = query(conn, state)
        return jsonify({"count": len(found), "jobs": [j.to_dict() for j in found]})

    @app.route("/api/jobs/<path:job_id>/log")
    @with_conn
    def job_log(conn, job_id):
        job = get(conn, job_id)
        return jsonify({"id": job.id, "state": job.state, "output": job.output, "error": job.error})

    @app.route("/api/dlq/retry/<path:job_id>", methods=["POST"])
    @with_conn
    def retry(conn, job_id):
        job = requeue_dead(conn, job_id)
        console.log(f"Requeued DLQ job {escape(job.id)} from the dashboard")
        return jsonify({"success": True, "message": f"Job {job.id} retried."})

    return app
