"""Tests for doAfter lookup, priority inheritance and prioritized ordering."""

from datetime import datetime, timedelta

import pytest

from task_engine.core.content import ContentTree
from task_engine.core.errors import UnstableDependencyReference
from task_engine.core.evaluation import EvaluationContext
from task_engine.core.graph import (
    build_do_after_index,
    effective_priority,
    get_do_afters,
    get_multiple_do_afters,
    prioritize_tasks,
)
from task_engine.db.models import ElementRef, Entry, LogStatus, Page, Priority, Task, TaskLog, TaskPriority

NOW = datetime(2024, 3, 15, 12, 0)
TODAY = NOW.date()


def _ctx(*pages: Page) -> EvaluationContext:
    root = Page("/", elements=[], children=list(pages))
    return EvaluationContext(ContentTree(root), now=NOW)


def _priority(p: Priority) -> list[TaskPriority]:
    return [TaskPriority(p)]


class TestDoAfters:
    def test_inverts_edges_across_pages(self):
        a = Task("/one", "a")
        b = Task("/two", "b", do_befores=[ElementRef("/one", "a")])
        c = Task("/two", "c", do_befores=[ElementRef("/one", "a")])
        ctx = _ctx(Page("/one", elements=[a]), Page("/two", elements=[b, c]))
        assert get_do_afters(ctx, a) == [b, c]
        assert get_do_afters(ctx, b) == []

    def test_multiple_in_input_order(self):
        a = Task("/p", "a")
        b = Task("/p", "b", do_befores=[ElementRef("/p", "a")])
        ctx = _ctx(Page("/p", elements=[a, b]))
        result = get_multiple_do_afters(ctx, [b, a])
        assert list(result) == [b, a]
        assert result[a] == [b]
        assert result[b] == []

    def test_hidden_pages_not_indexed(self):
        a = Task("/p", "a")
        b = Task("/hidden", "b", do_befores=[ElementRef("/p", "a")])
        ctx = _ctx(Page("/p", elements=[a]), Page("/hidden", accessible=False, elements=[b]))
        assert get_do_afters(ctx, a) == []

    def test_generated_id_rejected(self):
        a = Task("/p", "task-1")
        b = Task("/p", "b", do_befores=[ElementRef("/p", "task-1")])
        page = Page("/p", elements=[a, b], generated_ids={"task-1"})
        with pytest.raises(UnstableDependencyReference):
            build_do_after_index(ContentTree(Page("/", children=[page])))


class TestEffectivePriority:
    def test_inherits_from_waiting_do_after(self):
        a = Task("/p", "a", priorities=_priority(Priority.LOW))
        b = Task("/p", "b", do_befores=[ElementRef("/p", "a")], priorities=_priority(Priority.HIGH))
        ctx = _ctx(Page("/p", elements=[a, b]))
        assert effective_priority(ctx, a) is Priority.HIGH

    def test_reverts_when_do_after_completed(self):
        a = Task("/p", "a", priorities=_priority(Priority.LOW))
        b = Task(
            "/p",
            "b",
            do_befores=[ElementRef("/p", "a")],
            priorities=_priority(Priority.HIGH),
            log=TaskLog([Entry(LogStatus.COMPLETED, TODAY)]),
        )
        ctx = _ctx(Page("/p", elements=[a, b]))
        assert effective_priority(ctx, a) is Priority.LOW

    def test_future_do_after_not_inherited(self):
        a = Task("/p", "a", priorities=_priority(Priority.LOW))
        b = Task(
            "/p",
            "b",
            on=TODAY + timedelta(days=3),
            do_befores=[ElementRef("/p", "a")],
            priorities=_priority(Priority.CRITICAL),
        )
        ctx = _ctx(Page("/p", elements=[a, b]))
        assert effective_priority(ctx, a) is Priority.LOW

    def test_transitive(self):
        a = Task("/p", "a", priorities=_priority(Priority.LOW))
        b = Task("/p", "b", do_befores=[ElementRef("/p", "a")], priorities=_priority(Priority.LOW))
        c = Task("/p", "c", do_befores=[ElementRef("/p", "b")], priorities=_priority(Priority.CRITICAL))
        ctx = _ctx(Page("/p", elements=[a, b, c]))
        assert effective_priority(ctx, a) is Priority.CRITICAL

    def test_memoized(self):
        a = Task("/p", "a")
        ctx = _ctx(Page("/p", elements=[a]))
        assert effective_priority(ctx, a) is Priority.MEDIUM
        assert ctx.cached_priority(a) is Priority.MEDIUM


class TestPrioritizeTasks:
    def _tasks(self):
        undated_high = Task("/p", "undated-high", priorities=_priority(Priority.HIGH))
        late_low = Task("/p", "late-low", on=TODAY - timedelta(days=2), priorities=_priority(Priority.LOW))
        due_low = Task("/p", "due-low", on=TODAY, priorities=_priority(Priority.LOW))
        undated_medium = Task("/p", "undated-medium")
        return [undated_medium, due_low, undated_high, late_low]

    def test_priority_first(self):
        tasks = self._tasks()
        ctx = _ctx(Page("/p", elements=tasks))
        ordered = [t.id for t in prioritize_tasks(ctx, tasks)]
        assert ordered == ["undated-high", "undated-medium", "late-low", "due-low"]

    def test_date_first(self):
        tasks = self._tasks()
        ctx = _ctx(Page("/p", elements=tasks))
        ordered = [t.id for t in prioritize_tasks(ctx, tasks, date_first=True)]
        assert ordered == ["late-low", "due-low", "undated-high", "undated-medium"]

    def test_stable_for_ties(self):
        tasks = [Task("/p", f"t{i}") for i in range(4)]
        ctx = _ctx(Page("/p", elements=tasks))
        assert prioritize_tasks(ctx, tasks) == tasks
