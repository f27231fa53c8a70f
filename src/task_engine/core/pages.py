"""Content page management operations."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime

ROOT_PATH = "/"


@dataclass
class PageRow:
    path: str
    parent_path: str | None
    title: str
    accessible: bool
    created_at: datetime | None = None


def create_page(
    db: sqlite3.Connection,
    path: str,
    title: str = "",
    parent_path: str | None = ROOT_PATH,
    accessible: bool = True,
) -> PageRow:
    """Create a new page under ``parent_path`` (the root page when omitted)."""
    path = normalize_path(path)
    if path == ROOT_PATH:
        return ensure_root_page(db, title)

    parent_path = normalize_path(parent_path or ROOT_PATH)
    if parent_path == ROOT_PATH:
        ensure_root_page(db)
    elif not get_page(db, parent_path):
        raise ValueError(f"Parent page not found: {parent_path}")

    db.execute(
        "INSERT INTO pages (path, parent_path, title, accessible) VALUES (?, ?, ?, ?)",
        (path, parent_path, title, 1 if accessible else 0),
    )
    db.commit()
    return get_page(db, path)


def ensure_root_page(db: sqlite3.Connection, title: str = "") -> PageRow:
    """Ensure the root page exists, creating it if needed."""
    page = get_page(db, ROOT_PATH)
    if not page:
        db.execute(
            "INSERT INTO pages (path, parent_path, title, accessible) VALUES (?, NULL, ?, 1)",
            (ROOT_PATH, title or "Home"),
        )
        db.commit()
        page = get_page(db, ROOT_PATH)
    return page


def get_page(db: sqlite3.Connection, path: str) -> PageRow | None:
    """Get a page by path."""
    row = db.execute("SELECT * FROM pages WHERE path = ?", (normalize_path(path),)).fetchone()
    if not row:
        return None
    return _row_to_page(row)


def list_pages(db: sqlite3.Connection) -> list[PageRow]:
    """List all pages in creation order."""
    rows = db.execute("SELECT * FROM pages ORDER BY rowid").fetchall()
    return [_row_to_page(r) for r in rows]


def set_page_accessible(db: sqlite3.Connection, path: str, accessible: bool) -> PageRow | None:
    """Mark a page subtree as accessible or hidden from traversal."""
    if not get_page(db, path):
        return None
    db.execute(
        "UPDATE pages SET accessible = ? WHERE path = ?",
        (1 if accessible else 0, normalize_path(path)),
    )
    db.commit()
    return get_page(db, path)


def normalize_path(path: str) -> str:
    path = "/" + path.strip().strip("/")
    return path


def _row_to_page(row: sqlite3.Row) -> PageRow:
    return PageRow(
        path=row["path"],
        parent_path=row["parent_path"],
        title=row["title"] or "",
        accessible=bool(row["accessible"]),
        created_at=_parse_dt(row["created_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
