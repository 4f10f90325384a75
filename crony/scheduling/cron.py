"""Cron schedule model and next-run evaluation.

This module holds the parsed representation of a crontab schedule and the
search that finds the next instant a schedule is active. Evaluation works at
minute resolution and honors variable month lengths, leap years and the
traditional day-of-month / day-of-week OR semantics.
"""

import logging
from dataclasses import dataclass
from datetime import MAXYEAR, datetime, timedelta
from enum import Enum
from typing import Iterator, Optional, Tuple


logger = logging.getLogger(__name__)


# Longest possible gap between two leap days, with room to spare.
HORIZON_YEARS = 8

ONE_MINUTE = timedelta(minutes=1)
ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)


class FieldKind(Enum):
    """The five schedule columns and their inclusive bounds."""

    MINUTE = ("minute", 0, 59)
    HOUR = ("hour", 0, 23)
    DAY = ("day", 1, 31)
    MONTH = ("month", 1, 12)
    WEEKDAY = ("weekday", 0, 6)  # 0 = Sunday

    def __init__(self, field_name: str, min_value: int, max_value: int):
        self.field_name = field_name
        self.min_value = min_value
        self.max_value = max_value


@dataclass(frozen=True)
class RangeSpec:
    """A single ``start-end/step`` constraint on one field."""

    start: int
    end: int
    step: int = 1

    def matches(self, value: int) -> bool:
        """Check if the value falls on this range's steps."""
        return self.start <= value <= self.end and (value - self.start) % self.step == 0

    def is_wildcard(self, field: FieldKind) -> bool:
        """Check if the range covers every value of the field."""
        return self.step == 1 and self.start == field.min_value and self.end == field.max_value

    def is_valid(self, field: FieldKind) -> bool:
        """Check the range against the field bounds."""
        return (
            field.min_value <= self.start <= self.end <= field.max_value
            and self.step >= 1
        )


@dataclass(frozen=True)
class ListSpec:
    """Union of range specs constraining one field."""

    ranges: Tuple[RangeSpec, ...]

    def __post_init__(self):
        if not self.ranges:
            raise ValueError("ListSpec requires at least one range")

    def __iter__(self) -> Iterator[RangeSpec]:
        return iter(self.ranges)

    def __len__(self) -> int:
        return len(self.ranges)

    def matches(self, value: int) -> bool:
        """Check if any member range matches the value."""
        return any(r.matches(value) for r in self.ranges)

    def is_wildcard(self, field: FieldKind) -> bool:
        """Check if the list is a lone full-range, step-1 spec."""
        return len(self.ranges) == 1 and self.ranges[0].is_wildcard(field)


def _truncate_to_minute(t: datetime) -> datetime:
    return t.replace(second=0, microsecond=0)


def _add_years(t: datetime, years: int) -> datetime:
    """Add calendar years, rolling Feb 29 over to Mar 1 when needed.

    Results past the last representable year clamp to ``datetime.max``.
    """
    if t.year + years > MAXYEAR:
        return datetime.max.replace(tzinfo=t.tzinfo)
    try:
        return t.replace(year=t.year + years)
    except ValueError:
        return t.replace(year=t.year + years, month=3, day=1)


def _start_of_next_month(t: datetime) -> datetime:
    if t.month == 12:
        if t.year == MAXYEAR:
            raise OverflowError("date value out of range")
        return t.replace(year=t.year + 1, month=1, day=1, hour=0, minute=0)
    return t.replace(month=t.month + 1, day=1, hour=0, minute=0)


def _weekday(t: datetime) -> int:
    return t.isoweekday() % 7


@dataclass(frozen=True)
class Schedule:
    """Constraints on the minute/hour/day/month/weekday of a date.

    Schedules are immutable once parsed and can be evaluated concurrently
    from any number of tasks.
    """

    minute: ListSpec
    hour: ListSpec
    day: ListSpec
    month: ListSpec
    weekday: ListSpec

    def day_matches(self, t: datetime) -> bool:
        """Check the day and weekday fields against a date.

        If either field is unrestricted, both must match. If both are
        restricted, matching either one is enough.
        """
        day_matches = self.day.matches(t.day)
        weekday_matches = self.weekday.matches(_weekday(t))
        if self.day.is_wildcard(FieldKind.DAY) or self.weekday.is_wildcard(FieldKind.WEEKDAY):
            return day_matches and weekday_matches
        return day_matches or weekday_matches

    def matches(self, t: datetime) -> bool:
        """Check whether the schedule is active during the minute of t."""
        return (
            self.month.matches(t.month)
            and self.day_matches(t)
            and self.hour.matches(t.hour)
            and self.minute.matches(t.minute)
        )

    def next(self, t: datetime) -> Optional[datetime]:
        """Calculate the next time at which this schedule is active.

        Args:
            t: Reference instant. Naive or aware; the result keeps its tzinfo.

        Returns:
            The first matching minute strictly after the minute containing t,
            or None if nothing matches within the horizon.
        """
        horizon = _add_years(t, HORIZON_YEARS)
        try:
            return self._search(_truncate_to_minute(t) + ONE_MINUTE, horizon)
        except OverflowError:
            # Ran off the end of the calendar.
            return None

    def _search(self, t: datetime, horizon: datetime) -> Optional[datetime]:
        while t < horizon:
            # Advance each field until it matches, coarsest first. Rolling a
            # finer field over into a new coarser unit restarts the search.
            while not self.month.matches(t.month):
                t = _start_of_next_month(t)

            wrapped = False
            while not self.day_matches(t):
                t = t.replace(hour=0, minute=0) + ONE_DAY
                if t.day == 1:
                    wrapped = True
                    break
            if wrapped:
                continue

            while not self.hour.matches(t.hour):
                t = t.replace(minute=0) + ONE_HOUR
                if t.hour == 0:
                    wrapped = True
                    break
            if wrapped:
                continue

            while not self.minute.matches(t.minute):
                t += ONE_MINUTE
                if t.minute == 0:
                    wrapped = True
                    break
            if wrapped:
                continue

            return t

        return None

    def iter_next(self, t: datetime, count: int) -> Iterator[datetime]:
        """Yield up to count successive run times after t."""
        for _ in range(count):
            t = self.next(t)
            if t is None:
                return
            yield t


@dataclass(frozen=True)
class Entry:
    """A single line in a crontab."""

    schedule: Schedule
    command: str = ""
