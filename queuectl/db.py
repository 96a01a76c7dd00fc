from __future__ import annotations
import os
import sqlite3
from pathlib import Path
from typing import Optional

from .constants import APP_DIRNAME, DB_FILENAME, DEFAULTS

HOME_ENV = "QUEUECTL_HOME"


def app_dir() -> Path:
    override = os.environ.get(HOME_ENV)
    p = Path(override) if override else Path.home() / APP_DIRNAME
    p.mkdir(parents=True, exist_ok=True)
    return p


def db_path() -> Path:
    return app_dir() / DB_FILENAME


def get_connection(path: Optional[os.PathLike | str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path or db_path()), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    command TEXT NOT NULL,
    state TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER,
    priority INTEGER NOT NULL DEFAULT 0,
    timeout INTEGER,
    run_at TEXT NOT NULL,
    output TEXT NOT NULL DEFAULT '',
    error TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_state_run ON jobs(state, run_at);
CREATE INDEX IF NOT EXISTS idx_jobs_order ON jobs(priority DESC, created_at ASC);

CREATE TABLE IF NOT EXISTS workers (
    id TEXT PRIMARY KEY,
    pid INTEGER,
    hostname TEXT,
    started_at TEXT NOT NULL,
    last_heartbeat_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def init_db(path: Optional[os.PathLike | str] = None) -> None:
    """Create tables if they don't exist and seed default config."""
    conn = get_connection(path)
    try:
        conn.executescript(SCHEMA)
        for k, v in DEFAULTS.items():
            conn.execute("INSERT OR IGNORE INTO config(key, value) VALUES(?, ?)", (k, v))
        conn.commit()
    finally:
        conn.close()


def get_config(conn: sqlite3.Connection, key: str, default: Optional[str] = None) -> Optional[str]:
    row = conn.execute("SELECT value FROM config WHERE key=?", (key,)).fetchone()
    if row:
        return row[0]
    return default


def set_config(conn: sqlite3.Connection, key: str, value: str) -> str:
    """Upsert a config value. Returns "created" or "updated"."""
    with conn:
        cur = conn.execute(
            "UPDATE config SET value=? WHERE key=?",
            (value, key),
        )
        if cur.rowcount:
            return "updated"
        conn.execute("INSERT INTO config(key, value) VALUES(?, ?)", (key, value))
    return "created"


def all_config(conn: sqlite3.Connection) -> dict:
    rows = conn.execute("SELECT key, value FROM config ORDER BY key").fetchall()
    return {r[0]: r[1] for r in rows}
