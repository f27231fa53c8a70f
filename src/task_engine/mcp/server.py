"""MCP server exposing task status and logging tools."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date

from mcp.server.fastmcp import Context, FastMCP

from task_engine.config import Config, get_config
from task_engine.core import detail as detail_mod
from task_engine.core import selection as selection_mod
from task_engine.core import tasks as tasks_mod
from task_engine.core.errors import TaskError
from task_engine.core.evaluation import open_context
from task_engine.core.graph import prioritize_tasks
from task_engine.db.engine import init_db
from task_engine.db.models import Duration, ElementRef, LogStatus, Priority, Task, TaskAssignment, TaskPriority


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Initialize DB connection on startup, close on shutdown."""
    config = get_config()
    db = init_db(config.db_path)
    try:
        yield AppContext(db=db, config=config)
    finally:
        db.close()


mcp = FastMCP("task-engine", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


# ── Status Tools ──────────────────────────────────────────────────────────────


@mcp.tool()
def task_status(ctx: Context, page: str, task_id: str) -> dict:
    """Get a task's current status, effective priority, doBefores, doAfters and log."""
    app = _ctx(ctx)
    with open_context(app.db, app.config) as evaluation:
        tree_page = evaluation.tree.get_page(page)
        task = tree_page.element(task_id) if tree_page else None
        if not isinstance(task, Task):
            return {"error": f"Task not found: {page}#{task_id}"}
        try:
            return detail_mod.task_detail(evaluation, task)
        except TaskError as e:
            return {"error": str(e)}


@mcp.tool()
def list_tasks(
    ctx: Context,
    bucket: str = "ready",
    root: str | None = None,
    user: str | None = None,
    date_first: bool = False,
) -> list[dict] | dict:
    """List tasks in priority order. Buckets: all, ready, blocked, future."""
    app = _ctx(ctx)
    with open_context(app.db, app.config) as evaluation:
        root_path = root or app.config.root_page
        root_page = evaluation.tree.get_page(root_path)
        if root_page is None:
            return {"error": f"Page not found: {root_path}"}
        try:
            tasks = selection_mod.get_tasks(evaluation, bucket, root_page, user)
            tasks = prioritize_tasks(evaluation, tasks, date_first)
            return detail_mod.tasks_summary(evaluation, tasks)
        except (ValueError, TaskError) as e:
            return {"error": str(e)}


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def log_task(
    ctx: Context,
    page: str,
    task_id: str,
    status: str,
    on: str | None = None,
    scheduled_on: list[str] | None = None,
    who: str | None = None,
    comments: str | None = None,
) -> dict:
    """Log an outcome for a task: progress, completed, nothing to do, or missed.

    Dates are YYYY-MM-DD. ``scheduled_on`` lists the scheduled occurrences the
    entry satisfies.
    """
    app = _ctx(ctx)
    try:
        entry = tasks_mod.log_entry(
            app.db,
            page,
            task_id,
            LogStatus.parse(status),
            on=date.fromisoformat(on) if on else None,
            scheduled_on=[date.fromisoformat(d) for d in scheduled_on or []],
            who=who,
            comments=comments,
        )
    except ValueError as e:
        return {"error": str(e)}
    return detail_mod.entry_dict(entry)


@mcp.tool()
def create_task(
    ctx: Context,
    label: str,
    page: str = "/",
    task_id: str | None = None,
    on: str | None = None,
    recurring: str | None = None,
    relative: bool = False,
    do_befores: list[str] | None = None,
    priority: str | None = None,
    assigned_to: list[str] | None = None,
) -> dict:
    """Create a task. ``do_befores`` are PAGE#ID references; priority is future, low, medium, high or critical."""
    app = _ctx(ctx)
    try:
        task = tasks_mod.create_task(
            app.db,
            page,
            label,
            task_id=task_id,
            on=date.fromisoformat(on) if on else None,
            recurring=recurring,
            relative=relative,
            do_befores=[ElementRef.parse(r) for r in do_befores or []],
            priorities=[TaskPriority(Priority.parse(priority))] if priority else [],
            assignments=[TaskAssignment(u, Duration()) for u in assigned_to or []],
        )
    except (ValueError, TaskError) as e:
        return {"error": str(e)}
    return {
        "ref": str(task.ref),
        "label": task.label,
        "on": task.on.isoformat() if task.on else None,
        "recurring": task.recurring.display_for(task.relative) if task.recurring else None,
        "do_befores": [str(r) for r in task.do_befores],
    }
