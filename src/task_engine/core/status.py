"""Status resolution for a single task.

The status of a task, for a given day, is derived from its schedule and its
log:

Non-scheduled tasks (no "on" date and no "recurring"):
  1. The status of the most recent log entry with no scheduled dates
  2. "New"

Scheduled, non-recurring tasks:
  1. The most recent log entry scheduled on the "on" date, when it completes
     the schedule
  2. "Progress" logged today or later moves the task to the future
  3. "Late YYYY-MM-DD" when in the past
  4. "Due Today" when today
  5. The most recent log entry scheduled on the "on" date, when in the future
  6. "Waiting until YYYY-MM-DD"

Recurring tasks:
  1. Find the first incomplete scheduled date
  2. Classify it as Late, Due Today, or Waiting until, as above

Each "Late", "Due Today" and "New" status has a waiting variant used while any
doBefore task has not completed its schedule.
"""

import enum
from dataclasses import dataclass
from datetime import date, datetime

from task_engine.core.errors import InvalidScheduleConfiguration, RecurrenceScheduleError
from task_engine.db.models import Entry, LogStatus, Priority, Task

WAITING_SUFFIX = ' waiting for "Do Before"'


class StatusCategory(str, enum.Enum):
    NEW = "new"
    NEW_WAITING = "new-waiting"
    IN_FUTURE = "in-future"
    DUE_TODAY = "due-today"
    DUE_TODAY_WAITING = "due-today-waiting"
    LATE = "late"
    LATE_WAITING = "late-waiting"
    PROGRESS = "progress"
    PROGRESS_WAITING = "progress-waiting"
    COMPLETED = "completed"
    MISSED = "missed"

    @classmethod
    def for_log_status(cls, status: LogStatus, all_do_befores_completed: bool) -> "StatusCategory":
        if status is LogStatus.PROGRESS:
            return cls.PROGRESS if all_do_befores_completed else cls.PROGRESS_WAITING
        if status is LogStatus.MISSED:
            return cls.MISSED
        return cls.COMPLETED

    @property
    def is_waiting(self) -> bool:
        return self.value.endswith("-waiting")


@dataclass(frozen=True)
class StatusResult:
    category: StatusCategory
    description: str
    comments: str | None
    completed_schedule: bool
    ready_schedule: bool
    future_schedule: bool
    date: date | None

    def __post_init__(self):
        if self.completed_schedule and self.ready_schedule:
            raise ValueError("A task may not be both completed and ready")
        if self.ready_schedule and self.future_schedule:
            raise ValueError("A task may not be both ready and future")

    @classmethod
    def from_log_status(
        cls,
        status: LogStatus,
        comments: str | None,
        all_do_befores_completed: bool,
        future_schedule: bool,
        on: date | None,
    ) -> "StatusResult":
        """Status taken directly from a log entry."""
        return cls(
            category=StatusCategory.for_log_status(status, all_do_befores_completed),
            description=status.label if all_do_befores_completed else status.label_do_before,
            comments=comments,
            completed_schedule=status.completed_schedule,
            ready_schedule=(
                all_do_befores_completed
                and not status.completed_schedule
                and not future_schedule
            ),
            future_schedule=future_schedule,
            date=on,
        )

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "description": self.description,
            "comments": self.comments,
            "completed_schedule": self.completed_schedule,
            "ready_schedule": self.ready_schedule,
            "future_schedule": self.future_schedule,
            "date": self.date.isoformat() if self.date else None,
        }


def validate_schedule(task: Task) -> None:
    """Check the consistency of the on/recurring/relative attributes."""
    if task.recurring is not None:
        if task.on is None:
            if not task.relative:
                raise InvalidScheduleConfiguration(
                    f'Task "on" date required for non-relative recurring tasks: {task.ref}'
                )
        else:
            problem = task.recurring.check_schedule_from(task.on, "on")
            if problem is not None:
                raise RecurrenceScheduleError(f"Task {task.ref}: {problem}")
    elif task.relative:
        raise InvalidScheduleConfiguration(
            f'Task "relative" only allowed for recurring tasks: {task.ref}'
        )


def resolve_status(task: Task, today: date, all_do_befores_completed: bool) -> StatusResult:
    """Resolve the status of ``task`` on ``today``.

    ``all_do_befores_completed`` is supplied by the caller after resolving the
    doBefore tasks; it turns ready statuses into their waiting variants.
    """
    validate_schedule(task)
    if task.on is None and task.recurring is None:
        return _unscheduled(task, today, all_do_befores_completed)
    if task.recurring is None:
        return _scheduled(task, today, all_do_befores_completed)
    return _recurring(task, today, all_do_befores_completed)


def nominal_priority(task: Task, status: StatusResult, now: datetime) -> Priority:
    """Priority for a status: date-keyed when the status has a date, zero-day otherwise."""
    if status.date is not None:
        return task.priority_at(status.date, now)
    return task.zero_day_priority


def _progress(
    entry: Entry,
    today: date,
    ready: bool,
    future: bool,
    on: date | None,
    waiting: bool = False,
) -> StatusResult:
    if entry.on == today:
        description = "Progress Today"
    else:
        description = f"Progress on {entry.on.isoformat()}"
    if waiting:
        description += WAITING_SUFFIX
    return StatusResult(
        category=StatusCategory.PROGRESS_WAITING if waiting else StatusCategory.PROGRESS,
        description=description,
        comments=entry.comments,
        completed_schedule=False,
        ready_schedule=ready,
        future_schedule=future,
        date=on,
    )


def _unscheduled(task: Task, today: date, all_do_befores_completed: bool) -> StatusResult:
    entry = task.log.most_recent_entry(None)
    if entry is not None:
        if entry.status is LogStatus.PROGRESS:
            # Progress logged today or later moves the task to the future list
            future = entry.on >= today
            return _progress(
                entry,
                today,
                ready=not future and all_do_befores_completed,
                future=future,
                on=None,
                waiting=not future and not all_do_befores_completed,
            )
        return StatusResult.from_log_status(
            entry.status, entry.comments, all_do_befores_completed, False, None
        )
    if all_do_befores_completed:
        return StatusResult(StatusCategory.NEW, "New", None, False, True, False, None)
    return StatusResult(
        StatusCategory.NEW_WAITING, "New" + WAITING_SUFFIX, None, False, False, False, None
    )


def _due(
    on: date,
    today: date,
    entry: Entry | None,
    all_do_befores_completed: bool,
) -> StatusResult | None:
    """Late or Due Today for an occurrence, None when the occurrence is in the future."""
    comments = entry.comments if entry is not None else None
    if on < today:
        if all_do_befores_completed:
            return StatusResult(
                StatusCategory.LATE, f"Late {on.isoformat()}", comments, False, True, False, on
            )
        return StatusResult(
            StatusCategory.LATE_WAITING,
            f"Late {on.isoformat()}{WAITING_SUFFIX}",
            comments,
            False,
            False,
            False,
            on,
        )
    if on == today:
        if all_do_befores_completed:
            return StatusResult(StatusCategory.DUE_TODAY, "Due Today", comments, False, True, False, on)
        return StatusResult(
            StatusCategory.DUE_TODAY_WAITING,
            "Due Today" + WAITING_SUFFIX,
            comments,
            False,
            False,
            False,
            on,
        )
    return None


def _future_progress(entry: Entry | None, today: date, on: date) -> StatusResult | None:
    if entry is not None and entry.status is LogStatus.PROGRESS and entry.on >= today:
        return _progress(entry, today, False, True, on)
    return None


def _scheduled(task: Task, today: date, all_do_befores_completed: bool) -> StatusResult:
    on = task.on
    entry = task.log.most_recent_entry(on)
    if entry is not None and entry.status.completed_schedule:
        return StatusResult.from_log_status(
            entry.status, entry.comments, all_do_befores_completed, False, on
        )
    if (progress := _future_progress(entry, today, on)) is not None:
        return progress
    if (due := _due(on, today, entry, all_do_befores_completed)) is not None:
        return due
    if entry is not None:
        return StatusResult.from_log_status(
            entry.status,
            entry.comments,
            all_do_befores_completed,
            not entry.status.completed_schedule,
            on,
        )
    # Never done and waiting for the future, so not completed
    return StatusResult(
        StatusCategory.IN_FUTURE, f"Waiting until {on.isoformat()}", None, False, False, True, on
    )


def first_incomplete(task: Task, today: date) -> date:
    """The earliest occurrence of a recurring task not yet satisfied by the log."""
    recurring = task.recurring
    if not task.relative:
        if task.on is None:
            raise InvalidScheduleConfiguration(
                f'Task "on" date required for non-relative recurring tasks: {task.ref}'
            )
        return task.log.first_incomplete_scheduled_on(task.on, recurring)

    # Relative: schedule from the most recent completed entry, "on" or today otherwise
    recurring_from = task.on if task.on is not None else today
    for entry in reversed(task.log.entries):
        if entry.status.completed_schedule:
            last_scheduled = max(entry.scheduled_on) if entry.scheduled_on else None
            for candidate in recurring.schedule_iterator(entry.on):
                if candidate > entry.on and (last_scheduled is None or candidate > last_scheduled):
                    recurring_from = candidate
                    break
            break
    if task.on is not None and task.on > recurring_from:
        recurring_from = task.on
    return recurring_from


def _recurring(task: Task, today: date, all_do_befores_completed: bool) -> StatusResult:
    occurrence = first_incomplete(task, today)
    if occurrence <= today:
        entry = task.log.most_recent_entry(occurrence)
        if (progress := _future_progress(entry, today, occurrence)) is not None:
            return progress
        return _due(occurrence, today, entry, all_do_befores_completed)
    # A not-yet-due occurrence satisfies the schedule for dependency purposes
    return StatusResult(
        StatusCategory.IN_FUTURE,
        f"Waiting until {occurrence.isoformat()}",
        None,
        True,
        False,
        True,
        occurrence,
    )
