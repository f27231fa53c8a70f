"""CLI entry point for the task engine."""

import json
import logging
import sys
from datetime import datetime

import click

from task_engine.config import get_config
from task_engine.core import detail as detail_mod
from task_engine.core import pages as pages_mod
from task_engine.core import selection as selection_mod
from task_engine.core import tasks as tasks_mod
from task_engine.core.errors import TaskError
from task_engine.core.evaluation import open_context
from task_engine.core.graph import prioritize_tasks
from task_engine.db.engine import get_db
from task_engine.db.models import Duration, ElementRef, LogStatus, Priority, TaskAssignment, TaskPriority


def _get_db():
    config = get_config()
    return get_db(config.db_path)


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _parse_ref(text: str) -> ElementRef:
    try:
        return ElementRef.parse(text)
    except ValueError as e:
        raise click.BadParameter(str(e))


def _split_after(text: str) -> tuple[str, Duration]:
    """Split "VALUE[:AFTER]" into the value and its "after" duration."""
    value, _, after = text.partition(":")
    try:
        return value.strip(), Duration.parse(after)
    except ValueError as e:
        raise click.BadParameter(str(e))


def _parse_priority(text: str) -> TaskPriority:
    name, after = _split_after(text)
    try:
        return TaskPriority(Priority.parse(name), after)
    except ValueError as e:
        raise click.BadParameter(str(e))


_NOW_OPTION = click.option(
    "--now",
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"]),
    default=None,
    help="Evaluate as of this time instead of the current time",
)


@click.group()
def main():
    """tk - task status and priority engine"""
    config = get_config()
    logging.basicConfig(level=config.log_level)


# ── Page Commands ─────────────────────────────────────────────────────────────


@main.group("page")
def page_group():
    """Manage content pages."""
    pass


@page_group.command("add")
@click.argument("path")
@click.option("--title", default="", help="Page title")
@click.option("--parent", default="/", help="Parent page path")
@click.option("--hidden", is_flag=True, help="Exclude the page subtree from traversal")
def page_add(path, title, parent, hidden):
    """Create a new page."""
    with _get_db() as db:
        try:
            page = pages_mod.create_page(db, path, title, parent, accessible=not hidden)
        except ValueError as e:
            _fail(str(e))
        click.echo(f"Page created: {page.path}")
        if page.title:
            click.echo(f"  Title: {page.title}")


@page_group.command("list")
def page_list():
    """List pages."""
    with _get_db() as db:
        pages_mod.ensure_root_page(db)
        for page in pages_mod.list_pages(db):
            hidden = "" if page.accessible else " [hidden]"
            count = len(tasks_mod.list_tasks(db, page.path))
            click.echo(f"  {page.path}: {page.title} ({count} tasks){hidden}")


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("label")
@click.option("--page", default="/", help="Page the task lives on")
@click.option("--id", "task_id", default=None, help="Explicit task id (generated when omitted)")
@click.option("--on", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Scheduled date")
@click.option("--recurring", default=None, help='Recurrence, e.g. "weekly" or "every 2 weeks"')
@click.option("--relative", is_flag=True, help="Recur relative to the last completion")
@click.option("--before", "befores", multiple=True, help="PAGE#ID of a task to do before this one")
@click.option("--priority", "-p", "priorities", multiple=True, help='PRIORITY[:AFTER], e.g. "high:3 days"')
@click.option("--assign", "assignments", multiple=True, help='USER[:AFTER], e.g. "alice:1 week"')
def task_add(label, page, task_id, on, recurring, relative, befores, priorities, assignments):
    """Create a new task."""
    do_befores = [_parse_ref(b) for b in befores]
    task_priorities = [_parse_priority(p) for p in priorities]
    task_assignments = [TaskAssignment(*_split_after(a)) for a in assignments]

    with _get_db() as db:
        try:
            task = tasks_mod.create_task(
                db,
                page,
                label,
                task_id=task_id,
                on=on.date() if on else None,
                recurring=recurring,
                relative=relative,
                do_befores=do_befores,
                priorities=task_priorities,
                assignments=task_assignments,
            )
        except (ValueError, TaskError) as e:
            _fail(str(e))
        click.echo(f"Created task: {task.ref}")
        click.echo(f"  Label: {task.label}")
        if task.on:
            click.echo(f"  On: {task.on.isoformat()}")
        if task.recurring:
            click.echo(f"  Recurring: {task.recurring.display_for(task.relative)}")
        if task.do_befores:
            click.echo(f"  Do before: {', '.join(str(r) for r in task.do_befores)}")


@task_group.command("show")
@click.argument("ref")
@_NOW_OPTION
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_show(ref, now, json_output):
    """Show a task with its status, dependencies and log."""
    ref = _parse_ref(ref)
    with _get_db() as db:
        with open_context(db, now=now) as ctx:
            page = ctx.tree.get_page(ref.page)
            task = page.element(ref.id) if page else None
            if task is None or task not in page.tasks:
                _fail(f"Task not found: {ref}")
            try:
                detail = detail_mod.task_detail(ctx, task)
            except TaskError as e:
                _fail(str(e))

    if json_output:
        click.echo(json.dumps(detail, indent=2))
        return

    status = detail["status"]
    click.echo(f"Task: {detail['ref']}")
    click.echo(f"  Label: {detail['label']}")
    click.echo(f"  Status: {status['description']}")
    if status["comments"]:
        click.echo(f"  Comments: {status['comments']}")
    click.echo(f"  Priority: {detail['priority']} (effective {detail['effective_priority']})")
    if detail["on"]:
        click.echo(f"  On: {detail['on']}")
    if detail["recurring"]:
        click.echo(f"  Recurring: {detail['recurring']}")
    if detail["assigned_to"]:
        click.echo(f"  Assigned to: {', '.join(detail['assigned_to'])}")
    for label, related in (("Do before", detail["do_befores"]), ("Do after", detail["do_afters"])):
        if related:
            click.echo(f"  {label}:")
            for r in related:
                click.echo(f"    - {r['ref']}: {r['label']} ({r['status']['description']})")
    if detail["log"]:
        click.echo("  Log:")
        for e in detail["log"]:
            scheduled = f" for {', '.join(e['scheduled_on'])}" if e["scheduled_on"] else ""
            who = f" by {e['who']}" if e["who"] else ""
            comments = f": {e['comments']}" if e["comments"] else ""
            click.echo(f"    [{e['on']}] {e['status']}{scheduled}{who}{comments}")


@task_group.command("log")
@click.argument("ref")
@click.argument("status")
@click.option("--on", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Date of the entry (default today)")
@click.option("--scheduled", "scheduled_on", multiple=True, type=click.DateTime(formats=["%Y-%m-%d"]),
              help="Scheduled occurrence this entry satisfies")
@click.option("--who", default=None, help="Who logged the entry")
@click.option("--comments", "-m", default=None, help="Comments")
def task_log(ref, status, on, scheduled_on, who, comments):
    """Log progress, completion, nothing-to-do or a miss for a task."""
    ref = _parse_ref(ref)
    try:
        log_status = LogStatus.parse(status)
    except ValueError as e:
        raise click.BadParameter(str(e))
    with _get_db() as db:
        try:
            entry = tasks_mod.log_entry(
                db,
                ref.page,
                ref.id,
                log_status,
                on=on.date() if on else None,
                scheduled_on=[d.date() for d in scheduled_on],
                who=who,
                comments=comments,
            )
        except ValueError as e:
            _fail(str(e))
        click.echo(f"Logged {entry.status.label} on {entry.on.isoformat()} for {ref}")


@task_group.command("add-dep")
@click.argument("ref")
@click.argument("before_ref")
def task_add_dep(ref, before_ref):
    """Make BEFORE_REF a task to do before REF."""
    ref = _parse_ref(ref)
    before = _parse_ref(before_ref)
    with _get_db() as db:
        try:
            task = tasks_mod.add_do_before(db, ref.page, ref.id, before)
        except ValueError as e:
            _fail(str(e))
        if not task:
            _fail(f"Task not found: {ref}")
        click.echo(f"{task.ref} now done after: {', '.join(str(r) for r in task.do_befores)}")


@task_group.command("remove-dep")
@click.argument("ref")
@click.argument("before_ref")
def task_remove_dep(ref, before_ref):
    """Remove BEFORE_REF from the tasks to do before REF."""
    ref = _parse_ref(ref)
    before = _parse_ref(before_ref)
    with _get_db() as db:
        task = tasks_mod.remove_do_before(db, ref.page, ref.id, before)
        if not task:
            _fail(f"Task not found: {ref}")
        deps = ", ".join(str(r) for r in task.do_befores) or "(none)"
        click.echo(f"{task.ref} now done after: {deps}")


@task_group.command("assign")
@click.argument("ref")
@click.argument("user")
@click.option("--after", default="0", help='Delay before the task shows up for USER, e.g. "2 days"')
def task_assign(ref, user, after):
    """Assign a task to a user."""
    ref = _parse_ref(ref)
    try:
        delay = Duration.parse(after)
    except ValueError as e:
        raise click.BadParameter(str(e))
    with _get_db() as db:
        task = tasks_mod.assign_task(db, ref.page, ref.id, user, delay)
        if not task:
            _fail(f"Task not found: {ref}")
        click.echo(f"{task.ref} assigned to: {', '.join(str(a) for a in task.assignments)}")


@task_group.command("priority")
@click.argument("ref")
@click.argument("priorities", nargs=-1, required=True)
def task_priority(ref, priorities):
    """Replace a task's priority schedule, e.g. "low" "high:3 days"."""
    ref = _parse_ref(ref)
    schedule = [_parse_priority(p) for p in priorities]
    with _get_db() as db:
        task = tasks_mod.set_priorities(db, ref.page, ref.id, schedule)
        if not task:
            _fail(f"Task not found: {ref}")
        click.echo(f"{task.ref} priority: {', '.join(str(p) for p in task.priorities)}")


# ── Selection Commands ───────────────────────────────────────────────────────


@main.command("list")
@click.argument("bucket", type=click.Choice(selection_mod.BUCKETS), default="ready")
@click.option("--root", default=None, help="Page to list tasks under (default: configured root)")
@click.option("--user", default=None, help="Only tasks assigned to this user")
@click.option("--date-first", is_flag=True, help="Sort by date before priority")
@_NOW_OPTION
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def list_command(bucket, root, user, date_first, now, json_output):
    """List all, ready, blocked or future tasks in priority order."""
    config = get_config()
    with _get_db() as db:
        with open_context(db, config, now=now) as ctx:
            root_path = root or config.root_page
            root_page = ctx.tree.get_page(root_path)
            if root_page is None:
                _fail(f"Page not found: {root_path}")
            try:
                tasks = selection_mod.get_tasks(ctx, bucket, root_page, user)
                tasks = prioritize_tasks(ctx, tasks, date_first)
                summary = detail_mod.tasks_summary(ctx, tasks)
            except TaskError as e:
                _fail(str(e))

    if json_output:
        click.echo(json.dumps(summary, indent=2))
        return

    if not summary:
        click.echo("No tasks found.")
        return

    for t in summary:
        status = t["status"]
        when = f" [{status['date']}]" if status["date"] else ""
        click.echo(f"  {t['effective_priority']:<8} {t['ref']}: {t['label']} ({status['description']}){when}")


# ── Web Command ──────────────────────────────────────────────────────────────


@main.command("ui")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def ui_command(host, port):
    """Launch the JSON web API."""
    from task_engine.web.app import run_server

    click.echo(f"Starting task API at http://{host}:{port}")
    run_server(host=host, port=port)


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from task_engine.mcp.server import mcp

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
