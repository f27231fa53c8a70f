"""Task views shared by the CLI, web API and MCP tools."""

from task_engine.core.evaluation import EvaluationContext, get_multiple_statuses
from task_engine.core.graph import effective_priority, get_do_afters, get_multiple_do_afters
from task_engine.core.status import StatusResult, nominal_priority
from task_engine.db.models import Entry, LogStatus, Task


def task_dict(ctx: EvaluationContext, task: Task, status: StatusResult) -> dict:
    return {
        "ref": str(task.ref),
        "page": task.page,
        "id": task.id,
        "label": task.label,
        "on": task.on.isoformat() if task.on else None,
        "recurring": task.recurring.display_for(task.relative) if task.recurring else None,
        "assigned_to": [str(a) for a in task.assignments],
        "priorities": [str(p) for p in task.priorities],
        "status": status.to_dict(),
        "priority": nominal_priority(task, status, ctx.now).label,
        "effective_priority": effective_priority(ctx, task, status).label,
    }


def entry_dict(entry: Entry) -> dict:
    return {
        "status": entry.status.label,
        "on": entry.on.isoformat(),
        "scheduled_on": sorted(d.isoformat() for d in entry.scheduled_on),
        "who": entry.who,
        "comments": entry.comments,
    }


def tasks_summary(ctx: EvaluationContext, tasks: list[Task]) -> list[dict]:
    """Serialize tasks with statuses and doAfters resolved in one batch each."""
    statuses = get_multiple_statuses(ctx, tasks)
    do_afters = get_multiple_do_afters(ctx, tasks)
    result = []
    for task in tasks:
        item = task_dict(ctx, task, statuses[task])
        item["do_afters"] = [str(after.ref) for after in do_afters[task]]
        result.append(item)
    return result


def task_detail(ctx: EvaluationContext, task: Task) -> dict:
    """A task with its log, doBefores and doAfters.

    The statuses of the task and every related task are resolved in a single
    batch call.
    """
    do_befores = [ctx.tree.resolve_task(ref) for ref in task.do_befores]
    do_afters = get_do_afters(ctx, task)
    statuses = get_multiple_statuses(ctx, [task, *do_befores, *do_afters])
    result = task_dict(ctx, task, statuses[task])
    result["do_befores"] = [task_dict(ctx, t, statuses[t]) for t in do_befores]
    result["do_afters"] = [task_dict(ctx, t, statuses[t]) for t in do_afters]
    result["log"] = [entry_dict(e) for e in task.log.entries]
    last_done = task.log.most_recent_with_status(
        LogStatus.COMPLETED.label, LogStatus.NOTHING_TO_DO.label
    )
    result["last_completed"] = last_done.on.isoformat() if last_done else None
    return result
