"""Per-evaluation memoization of task statuses, priorities and queries.

An EvaluationContext is created for one request, command or batch, passed
explicitly to every core function, and closed afterwards. It owns the only
shared mutable state of an evaluation: its memo maps, guarded by a lock.
"""

import logging
import threading
from collections.abc import Callable, Hashable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from task_engine.config import get_config
from task_engine.core.content import ContentTree, load_tree
from task_engine.core.errors import CyclicDependency, EvaluationCancelled
from task_engine.core.status import StatusResult, resolve_status
from task_engine.db.models import Priority, Task

logger = logging.getLogger(__name__)


class EvaluationContext:
    def __init__(
        self,
        tree: ContentTree,
        now: datetime | None = None,
        concurrent: bool = True,
        max_workers: int | None = None,
    ):
        self.tree = tree
        self.now = now or datetime.now()
        # Computed once so a batch straddling midnight stays consistent
        self.today = self.now.date()
        self.concurrent = concurrent
        self.max_workers = max_workers
        self._lock = threading.RLock()
        self._statuses: dict[Task, StatusResult] = {}
        self._priorities: dict[Task, Priority] = {}
        self._queries: dict[Hashable, object] = {}
        self._cancelled = threading.Event()
        logger.debug("Evaluation context created for %s", self.now.isoformat())

    # ── Status memo ──────────────────────────────────────────────

    def cached_status(self, task: Task) -> StatusResult | None:
        with self._lock:
            return self._statuses.get(task)

    def store_status(self, task: Task, result: StatusResult) -> StatusResult:
        """Store a status, returning the value already stored by a racing worker if any."""
        with self._lock:
            self.check_cancelled()
            return self._statuses.setdefault(task, result)

    # ── Priority memo ────────────────────────────────────────────

    def cached_priority(self, task: Task) -> Priority | None:
        with self._lock:
            return self._priorities.get(task)

    def store_priority(self, task: Task, priority: Priority) -> Priority:
        with self._lock:
            self.check_cancelled()
            return self._priorities.setdefault(task, priority)

    # ── Query memo ───────────────────────────────────────────────

    def memo(self, key: Hashable, compute: Callable[[], object]):
        """Return the value memoized under ``key``, computing it on first use."""
        with self._lock:
            if key in self._queries:
                return self._queries[key]
        value = compute()
        with self._lock:
            self.check_cancelled()
            return self._queries.setdefault(key, value)

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        """Stop in-flight work; everything memoized so far is discarded."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._clear()
        logger.info("Evaluation context for %s cancelled", self.now.isoformat())

    def check_cancelled(self):
        if self._cancelled.is_set():
            raise EvaluationCancelled("Evaluation was cancelled")

    def close(self):
        self._clear()
        logger.debug("Evaluation context for %s closed", self.now.isoformat())

    def _clear(self):
        with self._lock:
            self._statuses.clear()
            self._priorities.clear()
            self._queries.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def get_status(
    ctx: EvaluationContext,
    task: Task,
    _path: frozenset = frozenset(),
) -> StatusResult:
    """Resolve the status of ``task``, resolving its doBefores through the same context."""
    cached = ctx.cached_status(task)
    if cached is not None:
        return cached
    ctx.check_cancelled()
    if task in _path:
        raise CyclicDependency(f"Task depends on itself through doBefore: {task.ref}")
    path = _path | {task}

    all_do_befores_completed = True
    for ref in task.do_befores:
        before = ctx.tree.resolve_task(ref)
        if not get_status(ctx, before, path).completed_schedule:
            all_do_befores_completed = False
            break
    return ctx.store_status(task, resolve_status(task, ctx.today, all_do_befores_completed))


def get_multiple_statuses(
    ctx: EvaluationContext,
    tasks: Iterable[Task],
) -> dict[Task, StatusResult]:
    """Resolve many statuses at once, preserving the input order.

    When more than one task is not yet cached and the context allows it, the
    uncached tasks are resolved concurrently. Every unit is waited for; the
    first failure, in input order, is re-raised with its original type.
    """
    tasks = list(tasks)
    uncached = list(dict.fromkeys(t for t in tasks if ctx.cached_status(t) is None))
    if len(uncached) > 1 and ctx.concurrent:
        _resolve_concurrently(ctx, uncached)
    return {task: get_status(ctx, task) for task in tasks}


def _resolve_concurrently(ctx: EvaluationContext, tasks: list[Task]):
    logger.debug("Resolving %d task statuses concurrently", len(tasks))
    with ThreadPoolExecutor(
        max_workers=ctx.max_workers, thread_name_prefix="task-status"
    ) as executor:
        futures = [executor.submit(get_status, ctx, task) for task in tasks]

    first_error = None
    for task, future in zip(tasks, futures):
        error = future.exception()
        if error is None:
            continue
        logger.warning("Status resolution failed for %s: %s", task.ref, error)
        if first_error is None:
            first_error = error
    if first_error is not None:
        raise first_error


def open_context(db, config=None, now: datetime | None = None) -> EvaluationContext:
    """Load a fresh tree snapshot and wrap it in a context using the configured policy."""
    if config is None:
        config = get_config()
    return EvaluationContext(
        load_tree(db),
        now=now,
        concurrent=config.concurrent,
        max_workers=config.max_workers,
    )
