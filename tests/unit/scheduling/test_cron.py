"""Unit tests for the cron schedule model and next-run evaluation."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from crony.scheduling.cron import FieldKind, ListSpec, RangeSpec, Schedule
from crony.scheduling.parser import parse_entry


def p(s: str) -> datetime:
    return datetime.strptime(s, "%Y-%m-%d %H:%M")


def schedule_of(line: str) -> Schedule:
    return parse_entry(line).schedule


class TestRangeSpec:
    """Test RangeSpec matching and wildcard detection."""

    def test_matches_follows_start_end_and_step(self):
        """Test that matches agrees with the arithmetic definition."""
        specs = [RangeSpec(0, 59, 5), RangeSpec(2, 10, 2), RangeSpec(3, 3, 1), RangeSpec(1, 31, 7)]
        for spec in specs:
            for i in range(-2, 65):
                expected = spec.start <= i <= spec.end and (i - spec.start) % spec.step == 0
                assert spec.matches(i) is expected, (spec, i)

    def test_wildcard_requires_full_range_and_unit_step(self):
        assert RangeSpec(0, 59, 1).is_wildcard(FieldKind.MINUTE)
        assert RangeSpec(1, 31, 1).is_wildcard(FieldKind.DAY)
        assert not RangeSpec(0, 59, 2).is_wildcard(FieldKind.MINUTE)
        assert not RangeSpec(1, 59, 1).is_wildcard(FieldKind.MINUTE)
        assert not RangeSpec(0, 5, 1).is_wildcard(FieldKind.WEEKDAY)

    def test_validity_checks_field_bounds(self):
        assert RangeSpec(0, 6, 1).is_valid(FieldKind.WEEKDAY)
        assert not RangeSpec(0, 7, 1).is_valid(FieldKind.WEEKDAY)
        assert not RangeSpec(0, 3, 1).is_valid(FieldKind.DAY)
        assert not RangeSpec(5, 4, 1).is_valid(FieldKind.HOUR)
        assert not RangeSpec(1, 4, 0).is_valid(FieldKind.HOUR)


class TestListSpec:
    """Test ListSpec union semantics."""

    def test_matches_any_member(self):
        spec = ListSpec((RangeSpec(0, 3, 2), RangeSpec(4, 4, 1)))
        assert [i for i in range(7) if spec.matches(i)] == [0, 2, 4]

    def test_wildcard_only_for_single_full_range(self):
        full = RangeSpec(0, 6, 1)
        assert ListSpec((full,)).is_wildcard(FieldKind.WEEKDAY)
        assert not ListSpec((full, full)).is_wildcard(FieldKind.WEEKDAY)
        assert not ListSpec((RangeSpec(0, 6, 2),)).is_wildcard(FieldKind.WEEKDAY)

    def test_empty_list_rejected(self):
        with pytest.raises(ValueError):
            ListSpec(())


class TestNext:
    """Test Schedule.next against known schedules."""

    def setup_method(self):
        self.rng = random.Random(1234)

    def check(self, line, start, expected):
        actual = schedule_of(line).next(start)
        assert actual == expected, f"{line!r}.next({start}) was {actual}, expected {expected}"

    def check_range(self, line, start, end):
        """For every time in [start, end), the next scheduled time is end."""
        self.check(line, start, end)
        self.check(line, end - timedelta(microseconds=1), end)
        span = int((end - start).total_seconds() * 1_000_000)
        for _ in range(100):
            t = start + timedelta(microseconds=self.rng.randrange(span))
            self.check(line, t, end)

    def test_schedule_that_never_fires(self):
        """Test that an unsatisfiable schedule returns None."""
        self.check("0 0 31 2 *", p("2000-01-01 00:00"), None)
        self.check("0 0 30 2 *", p("2013-06-15 12:34"), None)

    def test_predefined_labels(self):
        self.check_range("@yearly", p("2000-01-01 00:00"), p("2001-01-01 00:00"))
        self.check_range("@annually", p("2000-01-01 00:00"), p("2001-01-01 00:00"))
        self.check_range("@monthly", p("2000-01-01 00:00"), p("2000-02-01 00:00"))
        self.check_range("@weekly", p("2000-01-02 00:00"), p("2000-01-09 00:00"))
        self.check_range("@daily", p("2000-01-01 00:00"), p("2000-01-02 00:00"))
        self.check_range("@midnight", p("2000-01-01 00:00"), p("2000-01-02 00:00"))
        self.check_range("@hourly", p("2000-01-01 00:00"), p("2000-01-01 01:00"))

    def test_wildcard_with_step(self):
        self.check_range("*/5 * * * *", p("2000-01-01 00:00"), p("2000-01-01 00:05"))
        self.check_range("*/5 * * * *", p("2000-01-01 00:55"), p("2000-01-01 01:00"))

    def test_ranges(self):
        self.check_range("0-10 * * * * a", p("2000-01-01 00:00"), p("2000-01-01 00:01"))
        self.check_range("0-10 * * * * b", p("2000-01-01 00:09"), p("2000-01-01 00:10"))
        self.check_range("0-10 * * * * c", p("2000-01-01 00:10"), p("2000-01-01 01:00"))

    def test_ranges_with_step(self):
        self.check_range("0-10/5 * * * *", p("2000-01-01 00:00"), p("2000-01-01 00:05"))
        self.check_range("0-10/5 * * * *", p("2000-01-01 00:05"), p("2000-01-01 00:10"))
        self.check_range("0-10/5 * * * *", p("2000-01-01 00:10"), p("2000-01-01 01:00"))

    def test_lists(self):
        self.check_range("0,5,25 * * * *", p("2000-01-01 00:00"), p("2000-01-01 00:05"))
        self.check_range("0,5,25 * * * *", p("2000-01-01 00:05"), p("2000-01-01 00:25"))
        self.check_range("0,5,25 * * * *", p("2000-01-01 00:25"), p("2000-01-01 01:00"))

    def test_day_and_weekday_both_restricted_match_either(self):
        """Test that restricting both day fields broadens the match set."""
        # 2000-01-13 is a Thursday, 2000-01-14 a Friday
        self.check_range("0 0 13 * 5", p("2000-01-13 00:00"), p("2000-01-14 00:00"))
        self.check_range("0 0 13 * 5", p("2000-01-14 00:00"), p("2000-01-21 00:00"))
        self.check_range("0 0 13 * 5", p("2000-01-21 00:00"), p("2000-01-28 00:00"))
        self.check_range("0 0 13 * 5", p("2000-01-28 00:00"), p("2000-02-04 00:00"))
        self.check_range("0 0 13 * 5", p("2000-02-04 00:00"), p("2000-02-11 00:00"))
        self.check_range("0 0 13 * 5", p("2000-02-11 00:00"), p("2000-02-13 00:00"))
        self.check("0 0 13 * 5", p("2000-01-12 00:00"), p("2000-01-13 00:00"))

    def test_day_restricted_weekday_wildcard_requires_day(self):
        self.check("0 0 13 * *", p("2000-01-01 00:00"), p("2000-01-13 00:00"))
        self.check("0 0 13 * *", p("2000-01-13 00:00"), p("2000-02-13 00:00"))

    def test_weekday_restricted_day_wildcard_requires_weekday(self):
        self.check("0 0 * * 5", p("2000-01-01 00:00"), p("2000-01-07 00:00"))
        self.check("0 0 ? * fri", p("2000-01-07 00:00"), p("2000-01-14 00:00"))

    def test_leap_day(self):
        self.check("0 0 29 2 *", p("2001-01-01 00:00"), p("2004-02-29 00:00"))
        # 2100 is not a leap year
        self.check("0 0 29 2 *", p("2096-03-01 00:00"), p("2104-02-29 00:00"))

    def test_month_lengths(self):
        self.check("0 12 31 * *", p("2000-01-31 12:00"), p("2000-03-31 12:00"))
        self.check("30 6 30 * *", p("2001-01-30 06:30"), p("2001-03-30 06:30"))

    def test_year_rollover(self):
        self.check("15 3 * * *", p("1999-12-31 03:15"), p("2000-01-01 03:15"))
        self.check("0 0 1 jan *", p("1999-06-01 00:00"), p("2000-01-01 00:00"))

    def test_seconds_are_truncated(self):
        start = datetime(2000, 1, 1, 0, 4, 59, 999999)
        assert schedule_of("*/5 * * * *").next(start) == p("2000-01-01 00:05")

    def test_aware_times_keep_their_timezone(self):
        tz = timezone(timedelta(hours=-5))
        start = datetime(2000, 1, 1, 23, 30, tzinfo=tz)
        result = schedule_of("@daily").next(start)
        assert result == datetime(2000, 1, 2, 0, 0, tzinfo=tz)
        assert result.tzinfo is tz

    def test_end_of_calendar(self):
        """Test that searches reaching year 9999 end with None."""
        self.check("0 0 29 2 *", p("9998-03-01 00:00"), None)
        self.check("@yearly", p("9999-06-01 00:00"), None)
        self.check("* * * * *", p("9999-12-31 23:58"), p("9999-12-31 23:59"))
        self.check("* * * * *", p("9999-12-31 23:59"), None)
        self.check("0 0 * * *", p("9999-12-31 12:00"), None)

    def test_end_of_calendar_keeps_timezone(self):
        tz = timezone(timedelta(hours=2))
        start = datetime(9999, 12, 31, 23, 58, tzinfo=tz)
        assert schedule_of("* * * * *").next(start) == datetime(9999, 12, 31, 23, 59, tzinfo=tz)
        assert schedule_of("@hourly").next(start) is None


class TestNextProperties:
    """Test invariants of Schedule.next."""

    LINES = [
        "*/5 * * * *",
        "0 0 13 * 5",
        "15 2,14 * * 1-5",
        "0 0 29 2 *",
        "30 6 1-7 * mon",
        "*/20 9-17 * jan-mar,oct *",
        "@weekly",
    ]

    @pytest.mark.parametrize("line", LINES)
    def test_no_firing_skipped_between_t_and_next(self, line):
        """Test that no time between t and next(t) matches the schedule."""
        schedule = schedule_of(line)
        t = p("2000-01-01 00:00")
        for _ in range(20):
            nxt = schedule.next(t)
            assert nxt is not None and nxt > t
            assert schedule.matches(nxt)
            candidate = max(t.replace(second=0, microsecond=0) + timedelta(minutes=1), nxt - timedelta(days=2))
            while candidate < nxt:
                assert not schedule.matches(candidate), (line, candidate)
                candidate += timedelta(minutes=1)
            t = nxt

    @pytest.mark.parametrize("line", LINES)
    def test_reevaluation_just_before_next_is_stable(self, line):
        schedule = schedule_of(line)
        t = p("2017-08-09 10:11")
        for _ in range(10):
            nxt = schedule.next(t)
            assert schedule.next(nxt - timedelta(microseconds=1)) == nxt
            assert schedule.next(nxt - timedelta(seconds=30)) == nxt
            t = nxt

    @pytest.mark.parametrize("line", LINES)
    def test_later_start_never_yields_earlier_next(self, line):
        schedule = schedule_of(line)
        t1 = p("2000-02-20 08:00")
        n1 = schedule.next(t1)
        t2 = t1 + (n1 - t1) / 2
        assert schedule.next(t2) == n1
        assert schedule.next(n1) > n1


class TestAgainstCroniter:
    """Cross-check next-run computation against croniter."""

    EXPRESSIONS = [
        "*/5 * * * *",
        "0 0 13 * 5",
        "15 2,14 * * 1-5",
        "0 0 29 2 *",
        "30 6 1-7 * 1",
        "0 */3 * 1-3 *",
        "5 4 * * 0",
        "0 0 1 1 *",
    ]

    STARTS = [
        datetime(2000, 1, 1, 0, 0),
        datetime(2023, 2, 27, 13, 37, 12),
        datetime(2024, 12, 31, 23, 59),
    ]

    @pytest.mark.parametrize("expression", EXPRESSIONS)
    @pytest.mark.parametrize("start", STARTS)
    def test_matches_croniter(self, expression, start):
        croniter = pytest.importorskip("croniter")
        schedule = schedule_of(expression)
        reference = croniter.croniter(expression, start)
        t = start
        for _ in range(15):
            t = schedule.next(t)
            assert t == reference.get_next(datetime)


class TestIterNext:
    def test_yields_successive_times(self):
        runs = list(schedule_of("0,30 * * * *").iter_next(p("2000-01-01 00:00"), 3))
        assert runs == [p("2000-01-01 00:30"), p("2000-01-01 01:00"), p("2000-01-01 01:30")]

    def test_stops_at_exhaustion(self):
        assert list(schedule_of("0 0 31 2 *").iter_next(p("2000-01-01 00:00"), 3)) == []
