"""Recurrence rules for recurring tasks, backed by dateutil.rrule."""

import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time

from dateutil import rrule

from task_engine.core.errors import RecurrenceScheduleError

_NAMED_RULES = {
    "daily": "FREQ=DAILY",
    "weekly": "FREQ=WEEKLY",
    "monthly": "FREQ=MONTHLY",
    "yearly": "FREQ=YEARLY",
    "annually": "FREQ=YEARLY",
    "weekdays": "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR",
}

_WEEKDAYS = {
    "mo": "MO", "mon": "MO", "monday": "MO",
    "tu": "TU", "tue": "TU", "tues": "TU", "tuesday": "TU",
    "we": "WE", "wed": "WE", "wednesday": "WE",
    "th": "TH", "thu": "TH", "thur": "TH", "thurs": "TH", "thursday": "TH",
    "fr": "FR", "fri": "FR", "friday": "FR",
    "sa": "SA", "sat": "SA", "saturday": "SA",
    "su": "SU", "sun": "SU", "sunday": "SU",
}

_FREQUENCIES = {"day": "DAILY", "week": "WEEKLY", "month": "MONTHLY", "year": "YEARLY"}

_EVERY_N_RE = re.compile(r"^every\s+(\d+)\s+(day|week|month|year)s?$")
_EVERY_UNIT_RE = re.compile(r"^every\s+(day|week|month|year)$")
_EVERY_WEEKDAY_RE = re.compile(r"^every\s+([a-z][a-z,\s]*)$")


def _to_datetime(d: date) -> datetime:
    return datetime.combine(d, time.min)


@dataclass(frozen=True)
class Recurring:
    """A recurrence rule as authored (``text``) and as an RRULE body (``rule``)."""

    text: str
    rule: str

    @classmethod
    def parse(cls, text: str) -> "Recurring":
        """Parse a recurrence description. Raises ValueError when unrecognized."""
        normalized = " ".join(text.strip().lower().split())
        if not normalized:
            raise ValueError("Recurrence rule must not be empty")

        rule = _NAMED_RULES.get(normalized)
        if rule is None:
            rule = _parse_every(normalized)
        if rule is None:
            rule = text.strip()
            if rule.upper().startswith("RRULE:"):
                rule = rule[len("RRULE:"):]
            if "FREQ=" not in rule.upper():
                raise ValueError(f"Unrecognized recurrence rule: {text!r}")

        try:
            rrule.rrulestr(rule, dtstart=datetime(2000, 1, 1))
        except (KeyError, ValueError, TypeError) as e:
            raise ValueError(f"Invalid recurrence rule {text!r}: {e}") from e
        return cls(text=text.strip(), rule=rule)

    @property
    def display(self) -> str:
        return self.text[:1].upper() + self.text[1:]

    def display_for(self, relative: bool) -> str:
        return f"{self.display} (Relative)" if relative else self.display

    def _rrule(self, dtstart: date):
        return rrule.rrulestr(self.rule, dtstart=_to_datetime(dtstart))

    def schedule_iterator(self, from_date: date) -> Iterator[date]:
        """Yield occurrence dates on or after ``from_date``.

        A finite rule that runs out of occurrences raises
        RecurrenceScheduleError instead of ending silently.
        """
        for occurrence in self._rrule(from_date):
            yield occurrence.date()
        raise RecurrenceScheduleError(
            f"Recurrence \"{self.display}\" has no occurrences after {from_date.isoformat()}"
        )

    def check_schedule_from(self, anchor: date, label: str) -> str | None:
        """Return an error message when ``anchor`` is not itself an occurrence."""
        first = next(iter(self._rrule(anchor)), None)
        if first is None:
            return f"Recurrence \"{self.display}\" has no occurrences from \"{label}\" {anchor.isoformat()}"
        if first.date() != anchor:
            return (
                f"\"{label}\" date {anchor.isoformat()} is not an occurrence of "
                f"\"{self.display}\", next occurrence is {first.date().isoformat()}"
            )
        return None


def _parse_every(normalized: str) -> str | None:
    if match := _EVERY_N_RE.match(normalized):
        interval = int(match.group(1))
        if interval < 1:
            raise ValueError(f"Recurrence interval must be positive: {normalized!r}")
        return f"FREQ={_FREQUENCIES[match.group(2)]};INTERVAL={interval}"

    if match := _EVERY_UNIT_RE.match(normalized):
        return f"FREQ={_FREQUENCIES[match.group(1)]}"

    if match := _EVERY_WEEKDAY_RE.match(normalized):
        names = [n for n in re.split(r"[,\s]+", match.group(1)) if n and n != "and"]
        days = []
        for name in names:
            day = _WEEKDAYS.get(name)
            if day is None:
                return None
            if day not in days:
                days.append(day)
        if days:
            return f"FREQ=WEEKLY;BYDAY={','.join(days)}"

    return None
