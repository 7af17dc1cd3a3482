"""
Tests for the Temporal Normalizer
"""
from datetime import datetime, timedelta, timezone

import pytest

from calagent.agent.errors import PastDateError, UnresolvableDateError, ValidationError
from calagent.agent.normalizer import (coerce_reference, normalize, normalize_span,
                                       normalize_window, parse_canonical, parse_duration,
                                       resolve, resolve_end)

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class TestAbsoluteExpressions:
    """Absolute timestamps are reformatted, never shifted"""

    @pytest.mark.parametrize("expression, expected", [
        ("2023-11-20 10:00", "2023-11-20 10:00:00"),
        ("2023-11-20 10:00:05", "2023-11-20 10:00:05"),
        ("2023-11-20T10:00", "2023-11-20 10:00:00"),
        ("2023-11-20T10:00:00Z", "2023-11-20 10:00:00"),
        ("2023-11-20T10:00:00+09:00", "2023-11-20 10:00:00"),
        ("2023-11-20 7:05", "2023-11-20 07:05:00"),
        ("2023-11-20", "2023-11-20 00:00:00"),
    ])
    def test_canonical_output(self, saturday_afternoon, expression, expected):
        assert normalize(expression, saturday_afternoon) == expected

    def test_date_only_upper_bound(self, saturday_afternoon):
        assert normalize("2023-11-20", saturday_afternoon, bound="end") == "2023-11-20 23:59:59"

    def test_earlier_time_today_depends_on_granularity(self, saturday_afternoon):
        assert normalize("2023-11-11 09:00:00", saturday_afternoon) == "2023-11-11 09:00:00"
        for expression in ("2023-11-11 09:00:00", "today at 7am", "today"):
            with pytest.raises(PastDateError):
                resolve(expression, saturday_afternoon, granularity="instant")
        assert resolve("now", saturday_afternoon, granularity="instant") == saturday_afternoon
        assert resolve("today", saturday_afternoon, bound="end",
                       granularity="instant") == datetime(2023, 11, 11, 23, 59, 59)

    def test_event_span_starts_after_reference(self, saturday_afternoon):
        with pytest.raises(PastDateError) as info:
            normalize_span("today at 8am", None, saturday_afternoon)
        assert info.value.field == "from"

    def test_invalid_calendar_date(self, saturday_afternoon):
        with pytest.raises(UnresolvableDateError):
            normalize("2023-02-30", saturday_afternoon)

    def test_past_absolute_date_needs_historical(self, saturday_afternoon):
        with pytest.raises(PastDateError):
            normalize("2023-11-01 10:00", saturday_afternoon)
        assert normalize("2023-11-01 10:00", saturday_afternoon,
                         historical=True) == "2023-11-01 10:00:00"


class TestRelativeExpressions:
    """Relative expressions anchored to the reference instant"""

    @pytest.mark.parametrize("expression, expected", [
        ("today at 7pm", "2023-11-11 19:00:00"),
        ("this Monday at 8pm", "2023-11-13 20:00:00"),
        ("tomorrow at noon", "2023-11-12 12:00:00"),
        ("tomorrow 9:30", "2023-11-12 09:30:00"),
        ("tonight", "2023-11-11 20:00:00"),
        ("today", "2023-11-11 00:00:00"),
        ("now", "2023-11-11 15:00:00"),
        ("7pm", "2023-11-11 19:00:00"),
        ("at 10am", "2023-11-12 10:00:00"),
        ("in 2 hours", "2023-11-11 17:00:00"),
        ("in 30 minutes", "2023-11-11 15:30:00"),
        ("in 3 days", "2023-11-14 00:00:00"),
        ("day after tomorrow at 7:30 pm", "2023-11-13 19:30:00"),
        ("next week", "2023-11-13 00:00:00"),
        ("friday evening", "2023-11-17 19:00:00"),
        ("on Tuesday at 12am", "2023-11-14 00:00:00"),
    ])
    def test_resolution(self, saturday_afternoon, expression, expected):
        assert normalize(expression, saturday_afternoon) == expected

    def test_weekday_today_is_today(self, saturday_afternoon):
        assert normalize("saturday", saturday_afternoon) == "2023-11-11 00:00:00"

    def test_next_weekday_skips_current_week(self):
        wednesday = datetime(2023, 11, 15, 9, 0)
        assert normalize("next friday", wednesday) == "2023-11-24 00:00:00"
        assert normalize("friday", wednesday) == "2023-11-17 00:00:00"
        assert normalize("next monday", wednesday) == "2023-11-20 00:00:00"

    def test_historical_markers(self, saturday_afternoon):
        for expression in ("yesterday", "last friday", "3 days ago"):
            with pytest.raises(PastDateError):
                normalize(expression, saturday_afternoon)
        assert normalize("yesterday", saturday_afternoon, historical=True) == "2023-11-10 00:00:00"
        assert normalize("last friday", saturday_afternoon,
                         historical=True) == "2023-11-10 00:00:00"
        assert normalize("3 days ago", saturday_afternoon, historical=True) == "2023-11-08 00:00:00"

    @pytest.mark.parametrize("expression", ["", "   ", "sometime soon", "whenever", "at 25"])
    def test_unresolvable(self, saturday_afternoon, expression):
        with pytest.raises(UnresolvableDateError):
            normalize(expression, saturday_afternoon)

    def test_conflicting_day_references(self, saturday_afternoon):
        with pytest.raises(UnresolvableDateError):
            normalize("tomorrow friday", saturday_afternoon)

    def test_non_string_expression(self, saturday_afternoon):
        with pytest.raises(UnresolvableDateError):
            resolve(None, saturday_afternoon)


class TestFutureBias:
    """A bare weekday resolves to its next occurrence on or after the reference date"""

    @pytest.mark.parametrize("offset_days", range(14))
    def test_weekday_never_in_past(self, offset_days):
        reference = datetime(2023, 11, 6, 18, 45) + timedelta(days=offset_days)
        for index, name in enumerate(WEEKDAY_NAMES):
            resolved = resolve(name, reference)
            assert resolved.weekday() == index
            assert reference.date() <= resolved.date() < reference.date() + timedelta(days=7)


class TestDurationsAndEnds:
    """End expressions measured from the start"""

    @pytest.mark.parametrize("expression, expected", [
        ("5 hours", timedelta(hours=5)),
        ("90 minutes", timedelta(minutes=90)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("+2h", timedelta(hours=2)),
        ("for 45 min", timedelta(minutes=45)),
        ("half an hour", timedelta(minutes=30)),
        ("1.5 hours", timedelta(hours=1, minutes=30)),
    ])
    def test_parse_duration(self, expression, expected):
        assert parse_duration(expression) == expected

    @pytest.mark.parametrize("expression", ["tomorrow", "2023-11-14 10:00", "", None, "hours"])
    def test_not_a_duration(self, expression):
        assert parse_duration(expression) is None

    def test_duration_counts_from_start(self, saturday_afternoon):
        start = datetime(2023, 11, 13, 20, 0)
        end = resolve_end("5 hours", start, saturday_afternoon)
        assert end == datetime(2023, 11, 14, 1, 0)

    def test_bare_end_time_belongs_to_start_day(self, saturday_afternoon):
        start = datetime(2023, 11, 13, 20, 0)
        assert resolve_end("10pm", start, saturday_afternoon) == datetime(2023, 11, 13, 22, 0)


class TestDefaults:
    """Missing end bounds"""

    @pytest.mark.parametrize("start", [
        "2023-11-13 20:00:00", "2023-11-11 23:45:00", "2024-02-28 23:50:00", "2023-12-31 12:00:00"
    ])
    def test_single_event_defaults_to_thirty_minutes(self, saturday_afternoon, start):
        begin, end = normalize_span(start, None, saturday_afternoon)
        assert begin == start
        assert parse_canonical(end) - parse_canonical(begin) == timedelta(minutes=30)

    @pytest.mark.parametrize("start", [
        "2023-11-13 00:00:00", "2023-11-13 09:15:00", "2024-02-29 23:00:00"
    ])
    def test_day_scoped_window_ends_at_end_of_day(self, saturday_afternoon, start):
        window = normalize_window(start, None, saturday_afternoon)
        assert window.start == start
        assert window.end == f"{start[:10]} 23:59:59"
        assert window.include_all is False

    def test_window_without_start_is_today(self, monday_morning):
        window = normalize_window(None, None, monday_morning, include_all=True)
        assert (window.start, window.end) == ("2023-11-13 00:00:00", "2023-11-13 23:59:59")
        assert window.include_all is True

    def test_implicit_today_window(self, monday_morning):
        window = normalize_window("today", "", monday_morning)
        assert (window.start, window.end) == ("2023-11-13 00:00:00", "2023-11-13 23:59:59")

    def test_window_end_date_is_inclusive(self, monday_morning):
        window = normalize_window("today", "friday", monday_morning)
        assert window.end == "2023-11-17 23:59:59"

    def test_window_order_enforced(self, monday_morning):
        with pytest.raises(ValidationError) as info:
            normalize_window("2023-11-15 10:00", "2023-11-14 10:00", monday_morning)
        assert info.value.path == "to"

    def test_failing_field_is_reported(self, monday_morning):
        with pytest.raises(UnresolvableDateError) as info:
            normalize_window("today", "whenever", monday_morning)
        assert info.value.field == "to"
        with pytest.raises(UnresolvableDateError) as info:
            normalize_span("whenever", None, monday_morning)
        assert info.value.field == "from"


class TestReference:
    """Reference instant coercion"""

    def test_aware_datetime_keeps_wall_clock(self):
        aware = datetime(2023, 11, 13, 9, 0, 0, 123456, tzinfo=timezone(timedelta(hours=1)))
        assert coerce_reference(aware) == datetime(2023, 11, 13, 9, 0, 0)

    def test_string_reference(self):
        assert coerce_reference("2023-11-13 09:00:00") == datetime(2023, 11, 13, 9, 0, 0)

    def test_bad_reference(self):
        with pytest.raises(ValidationError):
            coerce_reference("next tuesday-ish")
