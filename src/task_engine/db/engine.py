"""SQLite database connection management and schema initialization."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS pages (
    path TEXT PRIMARY KEY,
    parent_path TEXT REFERENCES pages(path),
    title TEXT DEFAULT '',
    accessible INTEGER NOT NULL DEFAULT 1,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS elements (
    page_path TEXT NOT NULL REFERENCES pages(path) ON DELETE CASCADE,
    id TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'task',
    label TEXT DEFAULT '',
    generated INTEGER NOT NULL DEFAULT 0,
    on_date TEXT,
    recurring TEXT,
    relative INTEGER NOT NULL DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now')),
    PRIMARY KEY (page_path, id)
);

CREATE TABLE IF NOT EXISTS task_do_befores (
    page_path TEXT NOT NULL,
    task_id TEXT NOT NULL,
    before_page TEXT NOT NULL,
    before_id TEXT NOT NULL,
    PRIMARY KEY (page_path, task_id, before_page, before_id),
    FOREIGN KEY (page_path, task_id) REFERENCES elements(page_path, id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS task_priorities (
    page_path TEXT NOT NULL,
    task_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    priority TEXT NOT NULL CHECK (priority IN ('FUTURE', 'LOW', 'MEDIUM', 'HIGH', 'CRITICAL')),
    after TEXT NOT NULL DEFAULT '0',
    PRIMARY KEY (page_path, task_id, position),
    FOREIGN KEY (page_path, task_id) REFERENCES elements(page_path, id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS task_assignments (
    page_path TEXT NOT NULL,
    task_id TEXT NOT NULL,
    user TEXT NOT NULL,
    after TEXT NOT NULL DEFAULT '0',
    PRIMARY KEY (page_path, task_id, user),
    FOREIGN KEY (page_path, task_id) REFERENCES elements(page_path, id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS task_log_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    page_path TEXT NOT NULL,
    task_id TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('PROGRESS', 'COMPLETED', 'NOTHING_TO_DO', 'MISSED')),
    on_date TEXT NOT NULL,
    who TEXT,
    comments TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    FOREIGN KEY (page_path, task_id) REFERENCES elements(page_path, id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS task_log_scheduled_on (
    entry_id INTEGER NOT NULL REFERENCES task_log_entries(id) ON DELETE CASCADE,
    scheduled_on TEXT NOT NULL,
    PRIMARY KEY (entry_id, scheduled_on)
);

CREATE INDEX IF NOT EXISTS idx_log_entries_task ON task_log_entries (page_path, task_id, id);
"""


def init_db(db_path: Path) -> sqlite3.Connection:
    """Initialize the database, creating tables if needed."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    conn.commit()
    return conn


@contextmanager
def get_db(db_path: Path):
    """Context manager for database connections."""
    conn = init_db(db_path)
    try:
        yield conn
    finally:
        conn.close()
