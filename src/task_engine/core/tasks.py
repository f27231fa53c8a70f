"""Task persistence operations."""

import sqlite3
from collections.abc import Iterable
from datetime import date

from task_engine.core import pages as pages_mod
from task_engine.core.recurring import Recurring
from task_engine.core.status import validate_schedule
from task_engine.db.models import (
    Duration,
    Element,
    ElementRef,
    Entry,
    LogStatus,
    Priority,
    Task,
    TaskAssignment,
    TaskLog,
    TaskPriority,
)


def _generated_id(db: sqlite3.Connection, page_path: str) -> str:
    """Generate an id unique within the page: task-1, task-2, ..."""
    i = 1
    while True:
        candidate = f"task-{i}"
        existing = db.execute(
            "SELECT id FROM elements WHERE page_path = ? AND id = ?",
            (page_path, candidate),
        ).fetchone()
        if not existing:
            return candidate
        i += 1


def create_task(
    db: sqlite3.Connection,
    page_path: str,
    label: str,
    task_id: str | None = None,
    on: date | None = None,
    recurring: str | None = None,
    relative: bool = False,
    do_befores: list[ElementRef] | None = None,
    priorities: list[TaskPriority] | None = None,
    assignments: list[TaskAssignment] | None = None,
) -> Task:
    """Create a new task on a page.

    Without an explicit ``task_id`` a page-unique id is generated and flagged
    as generated; such tasks can not be used as doBefore targets.
    """
    page_path = pages_mod.normalize_path(page_path)
    if page_path == pages_mod.ROOT_PATH:
        pages_mod.ensure_root_page(db)
    elif not pages_mod.get_page(db, page_path):
        raise ValueError(f"Page not found: {page_path}")

    generated = task_id is None
    if generated:
        task_id = _generated_id(db, page_path)
    elif _element_exists(db, page_path, task_id):
        raise ValueError(f"Element already exists: {page_path}#{task_id}")

    # Validate before writing anything
    candidate = Task(
        page=page_path,
        id=task_id,
        label=label,
        on=on,
        recurring=Recurring.parse(recurring) if recurring else None,
        relative=relative,
    )
    validate_schedule(candidate)
    do_befores = [_checked_do_before(db, candidate.ref, ref) for ref in do_befores or []]

    position = db.execute(
        "SELECT COUNT(*) FROM elements WHERE page_path = ?", (page_path,)
    ).fetchone()[0]
    db.execute(
        """INSERT INTO elements (page_path, id, kind, label, generated, on_date, recurring, relative, position)
           VALUES (?, ?, 'task', ?, ?, ?, ?, ?, ?)""",
        (
            page_path,
            task_id,
            label,
            1 if generated else 0,
            on.isoformat() if on else None,
            candidate.recurring.text if candidate.recurring else None,
            1 if relative else 0,
            position,
        ),
    )

    for ref in do_befores:
        _insert_do_before(db, page_path, task_id, ref)
    _replace_priorities(db, page_path, task_id, priorities or [])
    for assignment in assignments or []:
        _upsert_assignment(db, page_path, task_id, assignment)

    db.commit()
    return get_task(db, page_path, task_id)


def add_element(
    db: sqlite3.Connection,
    page_path: str,
    element_id: str,
    label: str = "",
    kind: str = "note",
) -> Element:
    """Add a non-task element (heading, note, ...) to a page."""
    if kind == "task":
        raise ValueError("Use create_task to add tasks")
    page_path = pages_mod.normalize_path(page_path)
    if not pages_mod.get_page(db, page_path):
        raise ValueError(f"Page not found: {page_path}")
    if _element_exists(db, page_path, element_id):
        raise ValueError(f"Element already exists: {page_path}#{element_id}")
    position = db.execute(
        "SELECT COUNT(*) FROM elements WHERE page_path = ?", (page_path,)
    ).fetchone()[0]
    db.execute(
        "INSERT INTO elements (page_path, id, kind, label, position) VALUES (?, ?, ?, ?, ?)",
        (page_path, element_id, kind, label, position),
    )
    db.commit()
    return Element(page=page_path, id=element_id, label=label)


def get_task(db: sqlite3.Connection, page_path: str, task_id: str) -> Task | None:
    """Get a task by page and id with its dependencies, priorities, assignments and log."""
    elements = load_elements(db, pages_mod.normalize_path(page_path), task_id)
    for element in elements.get(pages_mod.normalize_path(page_path), []):
        if isinstance(element, Task):
            return element
    return None


def list_tasks(db: sqlite3.Connection, page_path: str | None = None) -> list[Task]:
    """List tasks, optionally restricted to one page."""
    if page_path is not None:
        page_path = pages_mod.normalize_path(page_path)
    tasks = []
    for elements in load_elements(db, page_path).values():
        tasks.extend(e for e in elements if isinstance(e, Task))
    return tasks


def delete_task(db: sqlite3.Connection, page_path: str, task_id: str) -> bool:
    """Delete a task and its log. References to it from other tasks are left dangling."""
    page_path = pages_mod.normalize_path(page_path)
    if not get_task(db, page_path, task_id):
        return False
    db.execute(
        """DELETE FROM task_log_scheduled_on WHERE entry_id IN
           (SELECT id FROM task_log_entries WHERE page_path = ? AND task_id = ?)""",
        (page_path, task_id),
    )
    for table in ("task_log_entries", "task_do_befores", "task_priorities", "task_assignments"):
        db.execute(f"DELETE FROM {table} WHERE page_path = ? AND task_id = ?", (page_path, task_id))
    db.execute("DELETE FROM elements WHERE page_path = ? AND id = ?", (page_path, task_id))
    db.commit()
    return True


def add_do_before(
    db: sqlite3.Connection,
    page_path: str,
    task_id: str,
    before: ElementRef,
) -> Task | None:
    """Add a doBefore reference to an existing task."""
    page_path = pages_mod.normalize_path(page_path)
    task = get_task(db, page_path, task_id)
    if not task:
        return None
    before = _checked_do_before(db, task.ref, before)
    if before in task.do_befores:
        return task  # Already exists
    _insert_do_before(db, page_path, task_id, before)
    db.commit()
    return get_task(db, page_path, task_id)


def remove_do_before(
    db: sqlite3.Connection,
    page_path: str,
    task_id: str,
    before: ElementRef,
) -> Task | None:
    """Remove a doBefore reference from a task."""
    page_path = pages_mod.normalize_path(page_path)
    if not get_task(db, page_path, task_id):
        return None
    db.execute(
        """DELETE FROM task_do_befores
           WHERE page_path = ? AND task_id = ? AND before_page = ? AND before_id = ?""",
        (page_path, task_id, pages_mod.normalize_path(before.page), before.id),
    )
    db.commit()
    return get_task(db, page_path, task_id)


def set_priorities(
    db: sqlite3.Connection,
    page_path: str,
    task_id: str,
    priorities: list[TaskPriority],
) -> Task | None:
    """Replace a task's priority schedule."""
    page_path = pages_mod.normalize_path(page_path)
    if not get_task(db, page_path, task_id):
        return None
    _replace_priorities(db, page_path, task_id, priorities)
    db.commit()
    return get_task(db, page_path, task_id)


def assign_task(
    db: sqlite3.Connection,
    page_path: str,
    task_id: str,
    user: str,
    after: Duration = Duration(),
) -> Task | None:
    """Assign a task to a user, replacing any existing assignment for that user."""
    page_path = pages_mod.normalize_path(page_path)
    if not get_task(db, page_path, task_id):
        return None
    _upsert_assignment(db, page_path, task_id, TaskAssignment(user, after))
    db.commit()
    return get_task(db, page_path, task_id)


def log_entry(
    db: sqlite3.Connection,
    page_path: str,
    task_id: str,
    status: LogStatus,
    on: date | None = None,
    scheduled_on: Iterable[date] = (),
    who: str | None = None,
    comments: str | None = None,
) -> Entry:
    """Append an entry to a task's log."""
    page_path = pages_mod.normalize_path(page_path)
    if not get_task(db, page_path, task_id):
        raise ValueError(f"Task not found: {page_path}#{task_id}")
    on = on or date.today()
    scheduled = frozenset(scheduled_on)
    cursor = db.execute(
        """INSERT INTO task_log_entries (page_path, task_id, status, on_date, who, comments)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (page_path, task_id, status.name, on.isoformat(), who, comments),
    )
    for d in sorted(scheduled):
        db.execute(
            "INSERT INTO task_log_scheduled_on (entry_id, scheduled_on) VALUES (?, ?)",
            (cursor.lastrowid, d.isoformat()),
        )
    db.commit()
    return Entry(status=status, on=on, scheduled_on=scheduled, who=who, comments=comments)


def get_task_log(db: sqlite3.Connection, page_path: str, task_id: str) -> TaskLog:
    task = get_task(db, page_path, task_id)
    return task.log if task else TaskLog()


def load_elements(
    db: sqlite3.Connection,
    page_path: str | None = None,
    element_id: str | None = None,
) -> dict[str, list[Element]]:
    """Load elements grouped by page path, in page order.

    Tasks come back fully populated. The returned objects are fresh copies;
    nothing holds on to the connection.
    """
    where, params = _where(page_path, element_id, "page_path", "id")
    rows = db.execute(
        f"SELECT * FROM elements{where} ORDER BY page_path, position", params
    ).fetchall()

    task_where, task_params = _where(page_path, element_id, "page_path", "task_id")
    do_befores = _group(
        db.execute(f"SELECT * FROM task_do_befores{task_where} ORDER BY rowid", task_params),
        lambda r: ElementRef(r["before_page"], r["before_id"]),
    )
    priorities = _group(
        db.execute(f"SELECT * FROM task_priorities{task_where} ORDER BY position", task_params),
        lambda r: TaskPriority(Priority[r["priority"]], Duration.parse(r["after"])),
    )
    assignments = _group(
        db.execute(f"SELECT * FROM task_assignments{task_where} ORDER BY rowid", task_params),
        lambda r: TaskAssignment(r["user"], Duration.parse(r["after"])),
    )
    entry_where, entry_params = _where(page_path, element_id, "e.page_path", "e.task_id")
    scheduled: dict[int, set[date]] = {}
    for r in db.execute(
        f"""SELECT s.entry_id, s.scheduled_on FROM task_log_scheduled_on s
            JOIN task_log_entries e ON e.id = s.entry_id{entry_where}""",
        entry_params,
    ):
        scheduled.setdefault(r["entry_id"], set()).add(date.fromisoformat(r["scheduled_on"]))
    logs = _group(
        db.execute(f"SELECT * FROM task_log_entries{task_where} ORDER BY id", task_params),
        lambda r: Entry(
            status=LogStatus[r["status"]],
            on=date.fromisoformat(r["on_date"]),
            scheduled_on=frozenset(scheduled.get(r["id"], ())),
            who=r["who"],
            comments=r["comments"],
        ),
    )

    result: dict[str, list[Element]] = {}
    for row in rows:
        key = (row["page_path"], row["id"])
        if row["kind"] == "task":
            element = Task(
                page=row["page_path"],
                id=row["id"],
                label=row["label"] or "",
                on=date.fromisoformat(row["on_date"]) if row["on_date"] else None,
                recurring=Recurring.parse(row["recurring"]) if row["recurring"] else None,
                relative=bool(row["relative"]),
                do_befores=do_befores.get(key, []),
                priorities=priorities.get(key, []),
                assignments=assignments.get(key, []),
                log=TaskLog(logs.get(key, [])),
            )
        else:
            element = Element(page=row["page_path"], id=row["id"], label=row["label"] or "")
        result.setdefault(row["page_path"], []).append(element)
    return result


def generated_ids(db: sqlite3.Connection) -> dict[str, set[str]]:
    """Ids of generated elements, grouped by page path."""
    result: dict[str, set[str]] = {}
    for row in db.execute("SELECT page_path, id FROM elements WHERE generated = 1"):
        result.setdefault(row["page_path"], set()).add(row["id"])
    return result


def _where(page_path, element_id, page_column, id_column) -> tuple[str, list]:
    clauses = []
    params: list = []
    if page_path is not None:
        clauses.append(f"{page_column} = ?")
        params.append(page_path)
    if element_id is not None:
        clauses.append(f"{id_column} = ?")
        params.append(element_id)
    return (" WHERE " + " AND ".join(clauses) if clauses else ""), params


def _group(rows, convert) -> dict[tuple[str, str], list]:
    grouped: dict[tuple[str, str], list] = {}
    for row in rows:
        grouped.setdefault((row["page_path"], row["task_id"]), []).append(convert(row))
    return grouped


def _element_exists(db: sqlite3.Connection, page_path: str, element_id: str) -> bool:
    return db.execute(
        "SELECT 1 FROM elements WHERE page_path = ? AND id = ?", (page_path, element_id)
    ).fetchone() is not None


def _checked_do_before(db: sqlite3.Connection, task_ref: ElementRef, before: ElementRef) -> ElementRef:
    """Normalize a doBefore reference, refusing self-references and missing targets."""
    before = ElementRef(pages_mod.normalize_path(before.page), before.id)
    if before == task_ref:
        raise ValueError(f"A task may not be done before itself: {before}")
    if not _element_exists(db, before.page, before.id):
        raise ValueError(f"Dependency element not found: {before}")
    return before


def _insert_do_before(db: sqlite3.Connection, page_path: str, task_id: str, before: ElementRef):
    db.execute(
        """INSERT OR IGNORE INTO task_do_befores (page_path, task_id, before_page, before_id)
           VALUES (?, ?, ?, ?)""",
        (page_path, task_id, pages_mod.normalize_path(before.page), before.id),
    )


def _replace_priorities(
    db: sqlite3.Connection, page_path: str, task_id: str, priorities: list[TaskPriority]
):
    db.execute(
        "DELETE FROM task_priorities WHERE page_path = ? AND task_id = ?", (page_path, task_id)
    )
    for position, task_priority in enumerate(priorities):
        db.execute(
            """INSERT INTO task_priorities (page_path, task_id, position, priority, after)
               VALUES (?, ?, ?, ?, ?)""",
            (page_path, task_id, position, task_priority.priority.name, str(task_priority.after)),
        )


def _upsert_assignment(
    db: sqlite3.Connection, page_path: str, task_id: str, assignment: TaskAssignment
):
    db.execute(
        """INSERT INTO task_assignments (page_path, task_id, user, after) VALUES (?, ?, ?, ?)
           ON CONFLICT (page_path, task_id, user) DO UPDATE SET after = excluded.after""",
        (page_path, task_id, assignment.user, str(assignment.after)),
    )
