"""Crontab text parsing.

Turns crontab documents, single entry lines and individual schedule fields
into the immutable model defined in :mod:`crony.scheduling.cron`.

Supported field syntax: ``*``, ``?``, ``N``, ``N-M``, ``*/S``, ``N-M/S`` and
comma-separated lists of those. The month column also accepts ``jan``-``dec``
and the weekday column ``sun``-``sat`` plus ``7`` as an alias for Sunday.
"""

import re
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence

from .cron import Entry, FieldKind, ListSpec, RangeSpec, Schedule


class CronValidationError(ValueError):
    """Exception raised when crontab text fails to parse."""

    def __init__(self, message: str, lineno: Optional[int] = None):
        super().__init__(message)
        self.lineno = lineno


_INTEGER_RE = re.compile(r"[0-9]+")

MONTH_SUBSTITUTIONS: Mapping[str, int] = MappingProxyType({
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
})

WEEKDAY_SUBSTITUTIONS: Mapping[str, int] = MappingProxyType({
    "sun": 0,
    "mon": 1,
    "tue": 2,
    "wed": 3,
    "thu": 4,
    "fri": 5,
    "sat": 6,
    "7": 0,
})


def _parse_value(text: str, what: str, substitutions: Optional[Mapping[str, int]]) -> int:
    if substitutions:
        substitution = substitutions.get(text.lower())
        if substitution is not None:
            return substitution
    if not _INTEGER_RE.fullmatch(text):
        raise CronValidationError(f"invalid range (can't parse {what} value {text!r})")
    return int(text)


def parse_range_spec(
    text: str,
    field: FieldKind,
    substitutions: Optional[Mapping[str, int]] = None,
) -> RangeSpec:
    """Parse a single ``BASE[/STEP]`` token.

    Args:
        text: Token such as ``*/5``, ``1-10/2``, ``jan`` or ``7``
        field: Field the token constrains
        substitutions: Optional symbolic names for the field's values

    Returns:
        The parsed RangeSpec

    Raises:
        CronValidationError: If the token is malformed or out of bounds
    """
    base, slash, step_text = text.partition("/")
    if slash:
        if not _INTEGER_RE.fullmatch(step_text):
            raise CronValidationError(f"invalid range (can't parse part after slash {step_text!r})")
        step = int(step_text)
        if step == 0:
            raise CronValidationError(f"invalid range (step must be positive) in {field.field_name} field")
    else:
        step = 1

    if base in ("*", "?"):
        start, end = field.min_value, field.max_value
    else:
        start_text, dash, end_text = base.partition("-")
        start = _parse_value(start_text, "start", substitutions)
        end = _parse_value(end_text, "end", substitutions) if dash else start

    spec = RangeSpec(start, end, step)
    if not spec.is_valid(field):
        raise CronValidationError(
            f"{field.field_name} must be between {field.min_value} and {field.max_value}"
        )
    return spec


def parse_list_spec(
    text: str,
    field: FieldKind,
    substitutions: Optional[Mapping[str, int]] = None,
) -> ListSpec:
    """Parse a comma-separated field into a ListSpec."""
    return ListSpec(tuple(
        parse_range_spec(part, field, substitutions) for part in text.split(",")
    ))


def parse_schedule(fields: Sequence[str]) -> Schedule:
    """Parse the first five columns of a crontab line.

    Args:
        fields: Minute, hour, day, month and weekday columns

    Returns:
        The parsed Schedule

    Raises:
        CronValidationError: On a wrong field count or any bad field
    """
    if len(fields) != 5:
        raise CronValidationError(f"wrong number of fields; expected 5, got {len(fields)}")
    minute, hour, day, month, weekday = fields
    return Schedule(
        minute=parse_list_spec(minute, FieldKind.MINUTE),
        hour=parse_list_spec(hour, FieldKind.HOUR),
        day=parse_list_spec(day, FieldKind.DAY),
        month=parse_list_spec(month, FieldKind.MONTH, MONTH_SUBSTITUTIONS),
        weekday=parse_list_spec(weekday, FieldKind.WEEKDAY, WEEKDAY_SUBSTITUTIONS),
    )


def must_parse_schedule(fields: Sequence[str]) -> Schedule:
    """Parse a schedule known to be valid, e.g. a literal in this module."""
    try:
        return parse_schedule(fields)
    except CronValidationError as e:
        raise RuntimeError(f"invalid built-in schedule {' '.join(fields)!r}: {e}") from e


PREDEFINED_LABELS: Mapping[str, Schedule] = MappingProxyType({
    "@yearly": must_parse_schedule(["0", "0", "1", "1", "*"]),
    "@annually": must_parse_schedule(["0", "0", "1", "1", "*"]),
    "@monthly": must_parse_schedule(["0", "0", "1", "*", "*"]),
    "@weekly": must_parse_schedule(["0", "0", "*", "*", "0"]),
    "@daily": must_parse_schedule(["0", "0", "*", "*", "*"]),
    "@midnight": must_parse_schedule(["0", "0", "*", "*", "*"]),
    "@hourly": must_parse_schedule(["0", "*", "*", "*", "*"]),
})


def parse_entry(line: str) -> Entry:
    """Parse a single crontab line.

    A line is either ``@label [command]`` or five schedule fields followed by
    an optional command. The command is everything after the schedule,
    whitespace included.

    Raises:
        CronValidationError: If the line cannot be parsed
    """
    line = line.lstrip()
    if not line:
        raise CronValidationError("empty crontab entry")

    if line.startswith("@"):
        fields = line.split(None, 1)
        label = fields[0]
        schedule = PREDEFINED_LABELS.get(label)
        if schedule is None:
            raise CronValidationError(f"unknown label {label}")
        return Entry(schedule, fields[1] if len(fields) > 1 else "")

    fields = line.split(None, 5)
    schedule = parse_schedule(fields[:5])
    return Entry(schedule, fields[5] if len(fields) > 5 else "")


def must_parse_entry(line: str) -> Entry:
    """Parse an entry known to be valid, e.g. a literal in a test."""
    try:
        return parse_entry(line)
    except CronValidationError as e:
        raise RuntimeError(f"invalid built-in entry {line!r}: {e}") from e


def parse_crontab(text: str) -> List[Entry]:
    """Parse the contents of a crontab file.

    Blank lines and lines starting with ``#`` are skipped. The first bad
    line aborts the parse.

    Raises:
        CronValidationError: With ``lineno`` set to the offending line
    """
    entries = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.lstrip()
        if not line or line.startswith("#"):
            continue
        try:
            entries.append(parse_entry(line))
        except CronValidationError as e:
            raise CronValidationError(f"line {lineno}: {e}", lineno=lineno) from e
    return entries
