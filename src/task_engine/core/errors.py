"""Domain errors raised while resolving task status and dependencies."""


class TaskError(Exception):
    """Base class for errors caused by task data."""


class DependencyNotFound(TaskError):
    """A doBefore/doAfter reference does not resolve to any element."""


class DependencyTypeMismatch(TaskError):
    """A doBefore/doAfter reference resolves to an element that is not a task."""


class UnstableDependencyReference(TaskError):
    """A doBefore/doAfter reference uses a generated id instead of an explicit one."""


class InvalidScheduleConfiguration(TaskError):
    """The on/recurring/relative attributes of a task are inconsistent."""


class RecurrenceScheduleError(TaskError):
    """The recurrence rule rejects the anchor date or cannot produce a date."""


class CyclicDependency(TaskError):
    """A task was reached again while it was still being resolved."""


class EvaluationCancelled(TaskError):
    """The evaluation context was cancelled before the computation finished."""
