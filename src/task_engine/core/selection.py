"""Task selection queries: all, ready, blocked and future buckets under a page.

Every query is memoized per (page, user) within the evaluation context and
returns a fresh list, so callers may sort or extend it. A user of None
selects every task; otherwise only tasks assigned to the user.
"""

from datetime import datetime, time

from task_engine.core.evaluation import EvaluationContext, get_multiple_statuses, get_status
from task_engine.core.status import StatusResult, nominal_priority
from task_engine.db.models import Page, Priority, Task, TaskAssignment

BUCKETS = ("all", "ready", "blocked", "future")


def _root(ctx: EvaluationContext, root: Page | None) -> Page:
    return root if root is not None else ctx.tree.root


def _assignment(task: Task, user: str | None) -> TaskAssignment | None:
    return task.assigned_to(user) if user is not None else None


def get_all_tasks(ctx: EvaluationContext, root: Page | None = None, user: str | None = None) -> list[Task]:
    """Every task under ``root`` in depth-first page order, filtered by assignment."""
    root = _root(ctx, root)

    def compute():
        return tuple(
            task
            for task in ctx.tree.iter_tasks(root)
            if user is None or task.assigned_to(user) is not None
        )

    return list(ctx.memo(("all", root.path, user), compute))


def _offset_elapsed(ctx: EvaluationContext, status: StatusResult, assignment: TaskAssignment | None) -> bool:
    """Whether the assignment's "after" offset from the status date has passed."""
    if status.date is None or assignment is None or assignment.after.is_zero:
        return True
    effective = assignment.after.offset(datetime.combine(status.date, time.min))
    return ctx.now >= effective


def _is_ready(ctx: EvaluationContext, task: Task, status: StatusResult, user: str | None) -> bool:
    if status.completed_schedule or not status.ready_schedule:
        return False
    if nominal_priority(task, status, ctx.now) == Priority.FUTURE:
        return False
    return _offset_elapsed(ctx, status, _assignment(task, user))


def _is_blocked(ctx: EvaluationContext, task: Task, status: StatusResult, user: str | None) -> bool:
    if status.completed_schedule or status.ready_schedule or status.future_schedule:
        return False
    if nominal_priority(task, status, ctx.now) == Priority.FUTURE:
        return False
    return _offset_elapsed(ctx, status, _assignment(task, user))


def _is_future(ctx: EvaluationContext, task: Task, status: StatusResult, user: str | None) -> bool:
    assignment = _assignment(task, user)
    # A non-zero "after" offset hides the task from this user's future list
    if assignment is not None and not assignment.after.is_zero:
        return False
    return status.future_schedule or nominal_priority(task, status, ctx.now) == Priority.FUTURE


_PREDICATES = {
    "ready": _is_ready,
    "blocked": _is_blocked,
    "future": _is_future,
}


def _select(ctx: EvaluationContext, bucket: str, root: Page | None, user: str | None) -> list[Task]:
    root = _root(ctx, root)
    predicate = _PREDICATES[bucket]

    def compute():
        candidates = get_all_tasks(ctx, root, user)
        statuses = get_multiple_statuses(ctx, candidates)
        return tuple(task for task in candidates if predicate(ctx, task, statuses[task], user))

    return list(ctx.memo((bucket, root.path, user), compute))


def get_ready_tasks(ctx: EvaluationContext, root: Page | None = None, user: str | None = None) -> list[Task]:
    return _select(ctx, "ready", root, user)


def get_blocked_tasks(ctx: EvaluationContext, root: Page | None = None, user: str | None = None) -> list[Task]:
    return _select(ctx, "blocked", root, user)


def get_future_tasks(ctx: EvaluationContext, root: Page | None = None, user: str | None = None) -> list[Task]:
    return _select(ctx, "future", root, user)


def get_tasks(ctx: EvaluationContext, bucket: str, root: Page | None = None, user: str | None = None) -> list[Task]:
    """Dispatch on a bucket name; raises ValueError for an unknown bucket."""
    if bucket == "all":
        return get_all_tasks(ctx, root, user)
    if bucket not in _PREDICATES:
        raise ValueError(f"Unknown task bucket: {bucket}")
    return _select(ctx, bucket, root, user)


def has_assigned_task(ctx: EvaluationContext, page: Page | None = None, user: str | None = None) -> bool:
    """Whether any ready, blocked or future task for ``user`` lives under ``page``.

    Stops at the first matching task.
    """
    page = _root(ctx, page)

    def compute():
        for task in ctx.tree.iter_tasks(page):
            if user is not None and task.assigned_to(user) is None:
                continue
            status = get_status(ctx, task)
            if any(predicate(ctx, task, status, user) for predicate in _PREDICATES.values()):
                return True
        return False

    return ctx.memo(("has-assigned", page.path, user), compute)
