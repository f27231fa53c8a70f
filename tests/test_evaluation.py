"""Tests for the evaluation context: memoization, dependencies and batch resolution."""

import logging
import threading
from datetime import date, datetime, timedelta

import pytest

from task_engine.core.content import ContentTree
from task_engine.core.errors import (
    CyclicDependency,
    DependencyNotFound,
    DependencyTypeMismatch,
    EvaluationCancelled,
    UnstableDependencyReference,
)
from task_engine.core.evaluation import EvaluationContext, get_multiple_statuses, get_status
from task_engine.core.status import StatusCategory
from task_engine.db.models import Element, ElementRef, Entry, LogStatus, Page, Task, TaskLog

NOW = datetime(2024, 3, 15, 12, 0)
TODAY = NOW.date()


def _tree(*elements, generated=()) -> ContentTree:
    return ContentTree(Page("/", elements=list(elements), generated_ids=set(generated)))


def _ref(task_id: str) -> ElementRef:
    return ElementRef("/", task_id)


def _done(on: date = TODAY) -> TaskLog:
    return TaskLog([Entry(LogStatus.COMPLETED, on)])


class _CancellingTree(ContentTree):
    """Cancels its evaluation context the moment ``trigger`` is resolved."""

    def __init__(self, root: Page, trigger: ElementRef):
        super().__init__(root)
        self.trigger = trigger
        self.ctx = None

    def resolve_task(self, ref):
        if ref == self.trigger:
            self.ctx.cancel()
        return super().resolve_task(ref)


class TestGetStatus:
    def test_memoized(self):
        task = Task("/", "a")
        ctx = EvaluationContext(_tree(task), now=NOW)
        first = get_status(ctx, task)
        assert get_status(ctx, task) is first

    def test_waiting_on_incomplete_do_before(self):
        before = Task("/", "before")
        after = Task("/", "after", do_befores=[_ref("before")])
        ctx = EvaluationContext(_tree(before, after), now=NOW)
        status = get_status(ctx, after)
        assert status.category is StatusCategory.NEW_WAITING
        assert status.category.is_waiting
        assert ctx.cached_status(before) is not None

    def test_ready_when_do_before_completed(self):
        before = Task("/", "before", log=_done())
        after = Task("/", "after", do_befores=[_ref("before")])
        ctx = EvaluationContext(_tree(before, after), now=NOW)
        assert get_status(ctx, after).category is StatusCategory.NEW

    def test_diamond_resolved_once(self):
        base = Task("/", "base", log=_done())
        left = Task("/", "left", do_befores=[_ref("base")], log=_done())
        right = Task("/", "right", do_befores=[_ref("base")], log=_done())
        top = Task("/", "top", do_befores=[_ref("left"), _ref("right")])
        ctx = EvaluationContext(_tree(base, left, right, top), now=NOW)
        assert get_status(ctx, top).ready_schedule is True
        base_status = ctx.cached_status(base)
        assert get_status(ctx, left) is ctx.cached_status(left)
        assert ctx.cached_status(base) is base_status

    def test_missing_dependency(self):
        task = Task("/", "a", do_befores=[_ref("missing")])
        ctx = EvaluationContext(_tree(task), now=NOW)
        with pytest.raises(DependencyNotFound):
            get_status(ctx, task)

    def test_dependency_not_a_task(self):
        task = Task("/", "a", do_befores=[_ref("note")])
        ctx = EvaluationContext(_tree(task, Element("/", "note")), now=NOW)
        with pytest.raises(DependencyTypeMismatch):
            get_status(ctx, task)

    def test_dependency_by_generated_id(self):
        generated = Task("/", "task-1")
        task = Task("/", "a", do_befores=[_ref("task-1")])
        ctx = EvaluationContext(_tree(generated, task, generated={"task-1"}), now=NOW)
        with pytest.raises(UnstableDependencyReference):
            get_status(ctx, task)

    def test_cycle_detected(self):
        a = Task("/", "a", do_befores=[_ref("b")])
        b = Task("/", "b", do_befores=[_ref("a")])
        ctx = EvaluationContext(_tree(a, b), now=NOW)
        with pytest.raises(CyclicDependency):
            get_status(ctx, a)

    def test_today_fixed_per_context(self):
        task = Task("/", "a", on=TODAY)
        ctx = EvaluationContext(_tree(task), now=NOW)
        assert ctx.today == TODAY
        assert get_status(ctx, task).category is StatusCategory.DUE_TODAY


class TestGetMultipleStatuses:
    def _tasks(self):
        tasks = [Task("/", f"t{i}", on=TODAY + timedelta(days=i - 2)) for i in range(5)]
        tasks.append(Task("/", "dep", do_befores=[_ref("t0")]))
        return tasks

    def test_preserves_input_order(self):
        tasks = self._tasks()
        ctx = EvaluationContext(_tree(*tasks), now=NOW)
        order = list(reversed(tasks))
        assert list(get_multiple_statuses(ctx, order)) == order

    def test_sequential_and_concurrent_agree(self):
        tasks = self._tasks()
        tree = _tree(*tasks)
        sequential = get_multiple_statuses(EvaluationContext(tree, now=NOW, concurrent=False), tasks)
        concurrent = get_multiple_statuses(EvaluationContext(tree, now=NOW, max_workers=4), tasks)
        assert sequential == concurrent

    def test_results_match_single_lookups(self):
        tasks = self._tasks()
        ctx = EvaluationContext(_tree(*tasks), now=NOW)
        results = get_multiple_statuses(ctx, tasks)
        for task in tasks:
            assert get_status(ctx, task) is results[task]

    def test_duplicates_allowed(self):
        task = Task("/", "a")
        ctx = EvaluationContext(_tree(task), now=NOW)
        results = get_multiple_statuses(ctx, [task, task])
        assert list(results) == [task]

    def test_empty(self):
        ctx = EvaluationContext(_tree(), now=NOW)
        assert get_multiple_statuses(ctx, []) == {}

    def test_error_kind_preserved(self, caplog):
        good = Task("/", "good")
        bad = Task("/", "bad", do_befores=[_ref("missing")])
        worse = Task("/", "worse", do_befores=[_ref("note")])
        ctx = EvaluationContext(_tree(good, bad, worse, Element("/", "note")), now=NOW)
        with caplog.at_level(logging.WARNING, logger="task_engine.core.evaluation"):
            with pytest.raises(DependencyNotFound):
                get_multiple_statuses(ctx, [good, bad, worse])
        assert sum("Status resolution failed" in r.message for r in caplog.records) == 2
        assert ctx.cached_status(good) is not None


class TestLifecycle:
    def test_close_discards_cache(self):
        task = Task("/", "a")
        with EvaluationContext(_tree(task), now=NOW) as ctx:
            get_status(ctx, task)
            assert ctx.cached_status(task) is not None
        assert ctx.cached_status(task) is None

    def test_cancelled_context_refuses_work(self):
        task = Task("/", "a")
        ctx = EvaluationContext(_tree(task), now=NOW)
        get_status(ctx, task)
        ctx.cancel()
        assert ctx.cancelled
        assert ctx.cached_status(task) is None
        with pytest.raises(EvaluationCancelled):
            get_status(ctx, task)

    def test_cancelled_batch(self):
        tasks = [Task("/", "a"), Task("/", "b")]
        ctx = EvaluationContext(_tree(*tasks), now=NOW)
        ctx.cancel()
        with pytest.raises(EvaluationCancelled):
            get_multiple_statuses(ctx, tasks)

    def test_cancelled_while_batch_in_flight(self):
        gate = Task("/", "gate")
        tasks = [
            Task("/", f"t{i}", do_befores=[_ref("gate")] if i == 250 else [])
            for i in range(500)
        ]
        tree = _CancellingTree(Page("/", elements=[gate, *tasks]), trigger=_ref("gate"))
        ctx = EvaluationContext(tree, now=NOW, max_workers=2)
        tree.ctx = ctx
        with pytest.raises(EvaluationCancelled):
            get_multiple_statuses(ctx, tasks)
        assert ctx.cancelled
        assert all(ctx.cached_status(t) is None for t in [gate, *tasks])

    def test_cancelled_from_another_thread(self):
        tasks = [Task("/", f"t{i}") for i in range(2000)]
        ctx = EvaluationContext(_tree(*tasks), now=NOW, max_workers=2)
        timer = threading.Timer(0.005, ctx.cancel)
        timer.start()
        try:
            get_multiple_statuses(ctx, tasks)
        except EvaluationCancelled:
            pass
        finally:
            timer.join()
        assert ctx.cancelled
        assert all(ctx.cached_status(t) is None for t in tasks)

    def test_memo(self):
        ctx = EvaluationContext(_tree(), now=NOW)
        calls = []
        assert ctx.memo("k", lambda: calls.append(1) or "v") == "v"
        assert ctx.memo("k", lambda: calls.append(1) or "w") == "v"
        assert calls == [1]
