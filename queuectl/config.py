from __future__ import annotations
import sqlite3
from dataclasses import dataclass
from typing import Optional

from rich.console import Console
from rich.markup import escape

from .constants import DEFAULTS
from .db import init_db, get_connection, get_config as _get, set_config as _set, all_config as _all
from .errors import InvalidConfig

console = Console()

# key -> minimum accepted integer value
_LIMITS = {
    "max_retries": 0,
    "backoff_base": 1,
    "job_timeout": 1,
    "stale_after": 0,
}

# Public API for config access; ensures DB exists first

def ensure_bootstrapped() -> None:
    init_db()


def get_value(key: str, default: Optional[str] = None) -> Optional[str]:
    ensure_bootstrapped()
    conn = get_connection()
    try:
        return _get(conn, key, default)
    finally:
        conn.close()


def validate(key: str, value: str) -> int:
    if key not in _LIMITS:
        raise InvalidConfig(f"Unknown config key {key!r}. Allowed keys: {', '.join(sorted(_LIMITS))}")
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise InvalidConfig(f"{key} must be an integer, got {value!r}") from None
    if parsed < _LIMITS[key]:
        raise InvalidConfig(f"{key} must be >= {_LIMITS[key]}, got {parsed}")
    return parsed


def set_value(key: str, value: str) -> str:
    parsed = validate(key, value)
    ensure_bootstrapped()
    conn = get_connection()
    try:
        return _set(conn, key, str(parsed))
    finally:
        conn.close()


def get_all() -> dict:
    ensure_bootstrapped()
    conn = get_connection()
    try:
        return _all(conn)
    finally:
        conn.close()


@dataclass(frozen=True)
class RuntimeConfig:
    """Tunables a worker reads once at startup and keeps for its lifetime."""

    max_retries: int = int(DEFAULTS["max_retries"])
    backoff_base: int = int(DEFAULTS["backoff_base"])
    job_timeout: int = int(DEFAULTS["job_timeout"])  # milliseconds
    stale_after: int = int(DEFAULTS["stale_after"])  # seconds, 0 = never reclaim


def load_runtime_config(conn: sqlite3.Connection, log_prefix: str = "config") -> RuntimeConfig:
    """Build a RuntimeConfig from the config table.

    Never raises: an unreadable table or a bad value falls back to the
    default for that key, and every fallback is reported on the console.
    """
    tag = escape(f"[{log_prefix}]")
    try:
        stored = _all(conn)
    except sqlite3.Error as e:
        console.log(f"[yellow]{tag} could not load config ({escape(str(e))}); using defaults[/]")
        return RuntimeConfig()

    values = {}
    for key in _LIMITS:
        raw = stored.get(key)
        if raw is None:
            continue
        try:
            values[key] = validate(key, raw)
        except InvalidConfig as e:
            console.log(f"[yellow]{tag} {escape(str(e))}; using default {DEFAULTS[key]}[/]")

    cfg = RuntimeConfig(**values)
    console.log(f"{tag} config loaded: {escape(repr(cfg))}")
    return cfg
