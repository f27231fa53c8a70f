"""Data models for the task engine."""

import enum
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time

from dateutil.relativedelta import relativedelta

from task_engine.core.recurring import Recurring


class Priority(enum.IntEnum):
    FUTURE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, name: str) -> "Priority":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown priority: {name}") from None


MAX_PRIORITY = Priority.CRITICAL
DEFAULT_PRIORITY = Priority.MEDIUM


_DURATION_RE = re.compile(r"^(\d+)(?:\s*(day|week|month|year)s?)?$")


@dataclass(frozen=True)
class Duration:
    """A calendar offset such as "3 days" or "1 month"."""

    count: int = 0
    unit: str = "day"

    @classmethod
    def parse(cls, text: str | None) -> "Duration":
        if text is None or not text.strip():
            return cls()
        match = _DURATION_RE.match(text.strip().lower())
        if not match:
            raise ValueError(f"Invalid duration: {text}")
        return cls(int(match.group(1)), match.group(2) or "day")

    @property
    def is_zero(self) -> bool:
        return self.count == 0

    def offset(self, value: date | datetime) -> date | datetime:
        return value + relativedelta(**{f"{self.unit}s": self.count})

    def __str__(self) -> str:
        if self.is_zero:
            return "0"
        return f"{self.count} {self.unit}{'' if self.count == 1 else 's'}"


@dataclass(frozen=True)
class TaskPriority:
    priority: Priority
    after: Duration = Duration()

    def __str__(self) -> str:
        if self.after.is_zero:
            return self.priority.label
        return f"{self.priority.label} after {self.after}"


@dataclass(frozen=True)
class TaskAssignment:
    user: str
    after: Duration = Duration()

    def __str__(self) -> str:
        if self.after.is_zero:
            return self.user
        return f"{self.user} after {self.after}"


class LogStatus(enum.Enum):
    PROGRESS = ("Progress", False)
    COMPLETED = ("Completed", True)
    NOTHING_TO_DO = ("Nothing To Do", True)
    MISSED = ("Missed", False)

    def __init__(self, label: str, completed_schedule: bool):
        self.label = label
        self.completed_schedule = completed_schedule

    @property
    def label_do_before(self) -> str:
        if self is LogStatus.PROGRESS:
            return f'{self.label} waiting for "Do Before"'
        return self.label

    @classmethod
    def parse(cls, name: str) -> "LogStatus":
        key = re.sub(r"[\s-]+", "_", name.strip()).upper()
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown log status: {name}") from None


@dataclass(frozen=True)
class Entry:
    status: LogStatus
    on: date
    scheduled_on: frozenset[date] = frozenset()
    who: str | None = None
    comments: str | None = None


@dataclass
class TaskLog:
    """Append-only, time-ordered log of outcomes for one task."""

    entries: list[Entry] = field(default_factory=list)

    def most_recent_entry(self, scheduled_on: date | None = None) -> Entry | None:
        """Most recent entry for an occurrence, or with no scheduled dates when None."""
        for entry in reversed(self.entries):
            if scheduled_on is None:
                if not entry.scheduled_on:
                    return entry
            elif scheduled_on in entry.scheduled_on:
                return entry
        return None

    def most_recent_with_status(self, *labels: str) -> Entry | None:
        wanted = {label.strip().lower() for label in labels}
        for entry in reversed(self.entries):
            if entry.status.label.lower() in wanted:
                return entry
        return None

    def first_incomplete_scheduled_on(self, from_date: date, recurring: Recurring) -> date:
        """First occurrence on or after ``from_date`` not satisfied by a completed entry."""
        for scheduled in recurring.schedule_iterator(from_date):
            entry = self.most_recent_entry(scheduled)
            if entry is None or not entry.status.completed_schedule:
                return scheduled
        raise AssertionError("schedule_iterator must raise when exhausted")


@dataclass(frozen=True)
class ElementRef:
    page: str
    id: str

    def __str__(self) -> str:
        return f"{self.page}#{self.id}"

    @classmethod
    def parse(cls, text: str) -> "ElementRef":
        page, sep, element_id = text.strip().rpartition("#")
        if not sep or not page or not element_id:
            raise ValueError(f"Invalid element reference (expected PAGE#ID): {text}")
        return cls(page, element_id)


@dataclass(eq=False)
class Element:
    page: str
    id: str
    label: str = ""

    @property
    def ref(self) -> ElementRef:
        return ElementRef(self.page, self.id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.ref})"


@dataclass(eq=False, repr=False)
class Task(Element):
    on: date | None = None
    recurring: Recurring | None = None
    relative: bool = False
    do_befores: list[ElementRef] = field(default_factory=list)
    priorities: list[TaskPriority] = field(default_factory=list)
    assignments: list[TaskAssignment] = field(default_factory=list)
    log: TaskLog = field(default_factory=TaskLog)

    @property
    def zero_day_priority(self) -> Priority:
        for task_priority in self.priorities:
            if task_priority.after.is_zero:
                return task_priority.priority
        return DEFAULT_PRIORITY

    def priority_at(self, from_date: date, now: datetime) -> Priority:
        """Priority of the latest schedule row whose offset from ``from_date`` has elapsed."""
        start = datetime.combine(from_date, time.min)
        best: datetime | None = None
        priority = None
        for task_priority in self.priorities:
            effective = task_priority.after.offset(start)
            if effective <= now and (best is None or effective >= best):
                best = effective
                priority = task_priority.priority
        return priority if priority is not None else self.zero_day_priority

    def assigned_to(self, user: str) -> TaskAssignment | None:
        for assignment in self.assignments:
            if assignment.user == user:
                return assignment
        return None


@dataclass(eq=False)
class Page:
    path: str
    title: str = ""
    accessible: bool = True
    parent: str | None = None
    children: list["Page"] = field(default_factory=list)
    elements: list[Element] = field(default_factory=list)
    generated_ids: set[str] = field(default_factory=set)

    def element(self, element_id: str) -> Element | None:
        for element in self.elements:
            if element.id == element_id:
                return element
        return None

    @property
    def tasks(self) -> list[Task]:
        return [e for e in self.elements if isinstance(e, Task)]

    def __repr__(self) -> str:
        return f"Page({self.path})"
