from __future__ import annotations

import os
import sqlite3
from typing import Any

from .runtime import utc_now
from .settings import Settings, settings


def _config(config: Settings | None) -> Settings:
    return config if config is not None else settings


def _resolve_db_path(config: Settings | None = None) -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory (a bind mount that Docker
    created as a directory, for instance) the journal file goes inside it.
    """
    p = os.path.abspath(_config(config).db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "svcorch.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def enabled(config: Settings | None = None) -> bool:
    return bool(_config(config).db_path)


def connect(config: Settings | None = None) -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(config), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(config: Settings | None = None) -> None:
    """Create the events table if it does not exist."""
    if not enabled(config):
        return
    with connect(config) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              project_root TEXT,
              service_name TEXT,
              action TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_service ON events(service_name);
            """
        )


def log_event(
    level: str,
    message: str,
    service_name: str | None = None,
    action: str | None = None,
    project_root: str | None = None,
    config: Settings | None = None,
) -> None:
    if not enabled(config):
        return
    with connect(config) as conn:
        conn.execute(
            "INSERT INTO events (ts, level, project_root, service_name, action, message) VALUES (?, ?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), project_root, service_name, action, message),
        )


def record(level: str, message: str, **kw: Any) -> bool:
    """log_event for the orchestration paths: a journal failure is dropped, not raised.

    Returns False when the event could not be written.
    """
    try:
        log_event(level, message, **kw)
    except (sqlite3.Error, OSError):
        return False
    return True


def latest_events(
    limit: int = 100,
    service_name: str | None = None,
    config: Settings | None = None,
) -> list[dict[str, Any]]:
    if not enabled(config):
        return []
    with connect(config) as conn:
        if service_name:
            rows = conn.execute(
                "SELECT * FROM events WHERE service_name=? ORDER BY id DESC LIMIT ?",
                (service_name, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
