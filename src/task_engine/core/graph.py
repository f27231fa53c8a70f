"""Dependency graph: doAfter lookup, priority inheritance and prioritized ordering."""

from collections.abc import Iterable
from functools import cmp_to_key

from task_engine.core.content import ContentTree
from task_engine.core.errors import CyclicDependency
from task_engine.core.evaluation import EvaluationContext, get_multiple_statuses, get_status
from task_engine.core.status import StatusResult, nominal_priority
from task_engine.db.models import MAX_PRIORITY, Priority, Task

_DO_AFTERS_KEY = ("do-afters",)


def build_do_after_index(tree: ContentTree) -> dict[Task, list[Task]]:
    """Invert every doBefore edge in the accessible tree.

    Each doBefore reference is resolved, so a dangling, non-task or
    generated-id reference anywhere in the tree raises here.
    """
    index: dict[Task, list[Task]] = {}
    for task in tree.iter_tasks():
        for ref in task.do_befores:
            before = tree.resolve_task(ref)
            index.setdefault(before, []).append(task)
    return index


def _do_after_index(ctx: EvaluationContext) -> dict[Task, list[Task]]:
    return ctx.memo(_DO_AFTERS_KEY, lambda: build_do_after_index(ctx.tree))


def get_do_afters(ctx: EvaluationContext, task: Task) -> list[Task]:
    """All tasks that list ``task`` as a doBefore, in tree order."""
    return list(_do_after_index(ctx).get(task, ()))


def get_multiple_do_afters(ctx: EvaluationContext, tasks: Iterable[Task]) -> dict[Task, list[Task]]:
    """doAfters for each task, in input order; empty lists for tasks with none."""
    index = _do_after_index(ctx)
    return {task: list(index.get(task, ())) for task in tasks}


def effective_priority(
    ctx: EvaluationContext,
    task: Task,
    status: StatusResult | None = None,
    _path: frozenset = frozenset(),
) -> Priority:
    """Nominal priority widened by every unfinished doAfter's effective priority.

    A doAfter contributes only while it is neither completed, ready nor
    future; that is, while it is waiting on this task.
    """
    cached = ctx.cached_priority(task)
    if cached is not None:
        return cached
    if task in _path:
        raise CyclicDependency(f"Task inherits priority from itself through doAfter: {task.ref}")
    path = _path | {task}

    if status is None:
        status = get_status(ctx, task)
    effective = nominal_priority(task, status, ctx.now)
    if effective != MAX_PRIORITY:
        for after in get_do_afters(ctx, task):
            after_status = get_status(ctx, after)
            if (
                after_status.completed_schedule
                or after_status.ready_schedule
                or after_status.future_schedule
            ):
                continue
            inherited = effective_priority(ctx, after, after_status, path)
            if inherited > effective:
                effective = inherited
                if effective == MAX_PRIORITY:
                    break
    return ctx.store_priority(task, effective)


def prioritize_tasks(ctx: EvaluationContext, tasks: Iterable[Task], date_first: bool = False) -> list[Task]:
    """Sort tasks by effective priority and status date.

    Tasks with a status date sort before those without, earlier dates first;
    higher priorities sort first. ``date_first`` picks which key leads. The
    sort is stable.
    """
    tasks = list(tasks)
    statuses = get_multiple_statuses(ctx, tasks)

    def date_diff(t1: Task, t2: Task) -> int:
        d1 = statuses[t1].date
        d2 = statuses[t2].date
        if (d1 is None) != (d2 is None):
            return -1 if d1 is not None else 1
        if d1 is not None and d1 != d2:
            return -1 if d1 < d2 else 1
        return 0

    def compare(t1: Task, t2: Task) -> int:
        if date_first:
            diff = date_diff(t1, t2)
            if diff:
                return diff
        p1 = effective_priority(ctx, t1, statuses[t1])
        p2 = effective_priority(ctx, t2, statuses[t2])
        if p1 != p2:
            return -1 if p1 > p2 else 1
        if not date_first:
            return date_diff(t1, t2)
        return 0

    return sorted(tasks, key=cmp_to_key(compare))
