"""Five-field cron expressions: parsing, validation, display and calendar conversion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from croniter import croniter

from taskbridge.scheduling.types import CalendarSchedule

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

_INT_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class CronExpression:
    minute: str = "*"
    hour: str = "*"
    day_of_month: str = "*"
    month: str = "*"
    day_of_week: str = "*"

    @property
    def expression(self) -> str:
        return f"{self.minute} {self.hour} {self.day_of_month} {self.month} {self.day_of_week}"

    @property
    def display_string(self) -> str:
        return to_display_string(self)

    def __str__(self) -> str:
        return self.expression


# (attribute, label, min, max)
_FIELDS = [
    ("minute", "minute", 0, 59),
    ("hour", "hour", 0, 23),
    ("day_of_month", "day of month", 1, 31),
    ("month", "month", 1, 12),
    ("day_of_week", "day of week", 0, 6),
]


def _literal(text: str) -> int | None:
    """Strict integer literal: ASCII digits with an optional sign, nothing else."""
    if not _INT_RE.fullmatch(text):
        return None
    return int(text)


def parse(text: str) -> CronExpression | None:
    """Split on whitespace. Exactly five fields or None; values are not checked."""
    fields = text.split()
    if len(fields) != 5:
        return None
    return CronExpression(*fields)


def is_valid_field(field: str, low: int, high: int) -> bool:
    if field == "*":
        return True

    if "," in field:
        return all(is_valid_field(part, low, high) for part in field.split(","))

    if "/" in field:
        parts = field.split("/")
        if len(parts) != 2:
            return False
        step = _literal(parts[1])
        if step is None or step <= 0:
            return False
        return parts[0] == "*" or is_valid_field(parts[0], low, high)

    if "-" in field:
        parts = field.split("-")
        if len(parts) != 2:
            return False
        start, end = _literal(parts[0]), _literal(parts[1])
        if start is None or end is None:
            return False
        return low <= start <= high and low <= end <= high and start <= end

    value = _literal(field)
    return value is not None and low <= value <= high


def validate(text: str) -> list[str]:
    """Return one message per invalid field; an empty list means the expression is valid."""
    cron = parse(text)
    if cron is None:
        return ["Invalid cron expression format. Expected 5 fields: minute hour day month weekday"]

    errors: list[str] = []
    for attr, label, low, high in _FIELDS:
        value = getattr(cron, attr)
        if not is_valid_field(value, low, high):
            errors.append(f"Invalid {label} field: {value} (must be {low}-{high} or *)")
    return errors


def to_display_string(cron: CronExpression) -> str:
    parts: list[str] = []

    if cron.minute != "*" and cron.hour != "*":
        parts.append(f"At {cron.hour.rjust(2, '0')}:{cron.minute.rjust(2, '0')}")
    elif cron.hour != "*":
        parts.append(f"At hour {cron.hour}")
    elif cron.minute != "*":
        parts.append(f"At minute {cron.minute}")
    else:
        parts.append("Every minute")

    if cron.day_of_month != "*":
        parts.append(f"on day {cron.day_of_month}")

    if cron.month != "*":
        month = _literal(cron.month)
        if month is not None and 1 <= month <= 12:
            parts.append(f"of {MONTH_NAMES[month - 1]}")
        else:
            parts.append(f"in month {cron.month}")

    if cron.day_of_week != "*":
        weekday = _literal(cron.day_of_week)
        if weekday is not None and 0 <= weekday <= 6:
            parts.append(f"on {WEEKDAY_NAMES[weekday]}")
        else:
            parts.append(f"on weekday {cron.day_of_week}")

    return " ".join(parts)


def from_calendar_schedule(schedule: CalendarSchedule) -> CronExpression:
    def field(value: int | None) -> str:
        return "*" if value is None else str(value)

    return CronExpression(
        minute=field(schedule.minute),
        hour=field(schedule.hour),
        day_of_month=field(schedule.day),
        month=field(schedule.month),
        day_of_week=field(schedule.weekday),
    )


def to_calendar_schedule(cron: CronExpression) -> CalendarSchedule:
    """Narrow to calendar fields. Lists, ranges, steps and wildcards become unset."""

    def field(value: str, low: int, high: int) -> int | None:
        number = _literal(value)
        if number is None or not low <= number <= high:
            return None
        return number

    return CalendarSchedule(
        minute=field(cron.minute, 0, 59),
        hour=field(cron.hour, 0, 23),
        day=field(cron.day_of_month, 1, 31),
        month=field(cron.month, 1, 12),
        weekday=field(cron.day_of_week, 0, 6),
    )


def next_run(text: str, after: datetime | None = None) -> datetime:
    """Next fire time after ``after`` (default: now)."""
    if validate(text):
        raise ValueError(f"Invalid cron expression: {text}")
    try:
        return croniter(text, after or datetime.now()).get_next(datetime)
    except (ValueError, KeyError):
        raise ValueError(f"Invalid cron expression: {text}")
