"""
Unit tests for the recurrence rule evaluator.

Tests pattern parsing and validation, occurrence expansion for daily,
weekly and monthly rules, timezone and DST resolution, and display
formatting.
"""

import pytest
from datetime import date, datetime, time, timezone
from itertools import islice

from backend.src.models import PatternType
from backend.src.services.exceptions import InvalidPatternError
from backend.src.services.recurrence import (
    RecurrencePattern,
    find_next_occurrence,
    format_recurrence_display,
    format_time_12h,
    instance_id_for,
    is_series_active,
    occurrences_in_window,
    parse_instance_id,
    validate_pattern,
    weekday_index,
)


def weekly(days, start=date(2026, 3, 2), at=time(10, 0), **kwargs):
    return RecurrencePattern(
        type=PatternType.WEEKLY,
        start_date=start,
        start_time=at,
        days_of_week=frozenset(days),
        **kwargs
    )


def daily(start=date(2026, 3, 2), at=time(10, 0), **kwargs):
    return RecurrencePattern(type=PatternType.DAILY, start_date=start, start_time=at, **kwargs)


def monthly(day, start=date(2026, 1, 1), at=time(19, 0), **kwargs):
    return RecurrencePattern(
        type=PatternType.MONTHLY,
        start_date=start,
        start_time=at,
        day_of_month=day,
        **kwargs
    )


# ============================================================================
# Parsing and Validation
# ============================================================================

class TestPatternParsing:
    """Tests for RecurrencePattern.from_dict."""

    def test_from_dict_snake_case(self, sample_pattern_data):
        """Test a full snake_case mapping."""
        pattern = RecurrencePattern.from_dict(sample_pattern_data(excluded_dates=['2026-03-18']))

        assert pattern.type == PatternType.WEEKLY
        assert pattern.days_of_week == frozenset({1, 3})
        assert pattern.start_date == date(2026, 3, 2)
        assert pattern.start_time == time(10, 0)
        assert pattern.timezone == 'Africa/Johannesburg'
        assert pattern.excluded_dates == frozenset({date(2026, 3, 18)})

    def test_from_dict_camel_case(self):
        """Test the camelCase keys stored by the mobile client."""
        pattern = RecurrencePattern.from_dict({
            'type': 'monthly',
            'dayOfMonth': 15,
            'startDate': '2026-01-01T00:00:00.000Z',
            'startTime': '19:30',
            'endDate': '2026-12-31',
            'excludedDates': [],
        })

        assert pattern.type == PatternType.MONTHLY
        assert pattern.day_of_month == 15
        assert pattern.start_date == date(2026, 1, 1)
        assert pattern.end_date == date(2026, 12, 31)

    def test_missing_timezone_uses_default(self, sample_pattern_data):
        data = sample_pattern_data()
        del data['timezone']

        pattern = RecurrencePattern.from_dict(data, default_timezone='Europe/Paris')

        assert pattern.timezone == 'Europe/Paris'

    def test_bad_start_time_format(self, sample_pattern_data):
        with pytest.raises(InvalidPatternError) as exc_info:
            RecurrencePattern.from_dict(sample_pattern_data(start_time='10am'))

        assert 'Start time must be in HH:mm format (e.g., "10:00")' in exc_info.value.errors

    def test_out_of_range_start_time(self, sample_pattern_data):
        with pytest.raises(InvalidPatternError):
            RecurrencePattern.from_dict(sample_pattern_data(start_time='25:00'))

    def test_unknown_type(self, sample_pattern_data):
        with pytest.raises(InvalidPatternError) as exc_info:
            RecurrencePattern.from_dict(sample_pattern_data(type='yearly'))

        assert "daily, weekly, monthly" in exc_info.value.errors[0]

    def test_to_dict_round_trip(self, sample_pattern_data):
        data = sample_pattern_data(excluded_dates=['2026-03-18'], end_date='2026-06-30')
        pattern = RecurrencePattern.from_dict(data)

        assert RecurrencePattern.from_dict(pattern.to_dict()) == pattern


class TestPatternValidation:
    """Tests for validate_pattern."""

    def test_weekly_requires_days(self):
        with pytest.raises(InvalidPatternError) as exc_info:
            validate_pattern(weekly([]))

        assert exc_info.value.errors == [
            "At least one day of week must be selected for weekly patterns"
        ]

    def test_weekly_day_out_of_range(self):
        with pytest.raises(InvalidPatternError) as exc_info:
            validate_pattern(weekly([7]))

        assert "Invalid day of week: 7. Must be 0-6 (Sunday-Saturday)" in exc_info.value.errors

    def test_monthly_requires_day_of_month(self):
        with pytest.raises(InvalidPatternError) as exc_info:
            validate_pattern(monthly(None))

        assert "day_of_month is required for monthly patterns" in exc_info.value.errors

    @pytest.mark.parametrize("day", [0, 32])
    def test_monthly_day_out_of_range(self, day):
        with pytest.raises(InvalidPatternError):
            validate_pattern(monthly(day))

    def test_non_positive_frequency(self):
        with pytest.raises(InvalidPatternError) as exc_info:
            validate_pattern(daily(frequency=0))

        assert "frequency must be a positive integer (got 0)" in exc_info.value.errors

    def test_invalid_timezone(self):
        with pytest.raises(InvalidPatternError) as exc_info:
            validate_pattern(daily(timezone='Mars/Olympus_Mons'))

        assert "Invalid timezone: Mars/Olympus_Mons" in exc_info.value.errors

    def test_all_errors_reported_together(self):
        """Test that every problem is collected before raising."""
        pattern = weekly([], end_date=date(2026, 3, 1), timezone='Nowhere/Land')

        with pytest.raises(InvalidPatternError) as exc_info:
            validate_pattern(pattern)

        assert len(exc_info.value.errors) == 3
        assert "End date must not be before start date" in exc_info.value.errors

    def test_expansion_validates_first(self):
        with pytest.raises(InvalidPatternError):
            occurrences_in_window(weekly([]), date(2026, 3, 2), date(2026, 3, 15))


# ============================================================================
# Expansion
# ============================================================================

class TestWeeklyExpansion:
    """Tests for weekly patterns."""

    def test_monday_wednesday_two_weeks(self):
        """Mon/Wed from Monday 2026-03-02 over 14 days yields 4 occurrences."""
        occurrences = list(occurrences_in_window(
            weekly([1, 3]), date(2026, 3, 2), date(2026, 3, 15)
        ))

        assert [o.local_date for o in occurrences] == [
            date(2026, 3, 2), date(2026, 3, 4), date(2026, 3, 9), date(2026, 3, 11),
        ]
        assert [o.day_of_week for o in occurrences] == ['Monday', 'Wednesday'] * 2

    def test_local_time_resolves_to_utc(self):
        """10:00 SAST is 08:00 UTC."""
        first = next(occurrences_in_window(weekly([1]), date(2026, 3, 2), date(2026, 3, 2)))

        assert first.instant == datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
        assert first.timezone_abbr == 'SAST'
        assert first.local_time_formatted == '10:00 AM'

    def test_every_two_weeks_anchored_at_start_date(self):
        """Week blocks start on the start date's weekday, not on a calendar week."""
        pattern = weekly([1, 3], start=date(2026, 3, 4), frequency=2)

        occurrences = list(occurrences_in_window(pattern, date(2026, 3, 1), date(2026, 3, 31)))

        assert [o.local_date for o in occurrences] == [
            date(2026, 3, 4), date(2026, 3, 9), date(2026, 3, 18), date(2026, 3, 23),
        ]

    def test_nothing_before_start_date(self):
        occurrences = list(occurrences_in_window(
            weekly([1, 3], start=date(2026, 3, 4)), date(2026, 3, 1), date(2026, 3, 8)
        ))

        assert [o.local_date for o in occurrences] == [date(2026, 3, 4)]

    def test_excluded_dates_skipped(self):
        pattern = weekly([1, 3], excluded_dates=frozenset({date(2026, 3, 4)}))

        occurrences = list(occurrences_in_window(pattern, date(2026, 3, 2), date(2026, 3, 8)))

        assert [o.local_date for o in occurrences] == [date(2026, 3, 2)]

    def test_end_date_is_inclusive(self):
        pattern = weekly([1, 3], end_date=date(2026, 3, 9))

        occurrences = list(occurrences_in_window(pattern, date(2026, 3, 1), date(2026, 4, 30)))

        assert occurrences[-1].local_date == date(2026, 3, 9)
        assert len(occurrences) == 3

    def test_sunday_is_index_zero(self):
        occurrences = list(occurrences_in_window(weekly([0]), date(2026, 3, 1), date(2026, 3, 15)))

        assert [o.local_date for o in occurrences] == [date(2026, 3, 8), date(2026, 3, 15)]
        assert weekday_index(date(2026, 3, 8)) == 0


class TestDailyAndMonthlyExpansion:
    """Tests for daily and monthly patterns."""

    def test_every_third_day(self):
        occurrences = list(occurrences_in_window(
            daily(frequency=3), date(2026, 3, 2), date(2026, 3, 12)
        ))

        assert [o.local_date.day for o in occurrences] == [2, 5, 8, 11]

    def test_monthly_day_31_skips_short_months(self):
        """Day 31 produces nothing in February or April."""
        occurrences = list(occurrences_in_window(
            monthly(31), date(2026, 1, 1), date(2026, 5, 31)
        ))

        assert [o.local_date for o in occurrences] == [
            date(2026, 1, 31), date(2026, 3, 31), date(2026, 5, 31),
        ]

    def test_monthly_day_31_empty_february(self):
        occurrences = list(occurrences_in_window(
            monthly(31), date(2026, 2, 1), date(2026, 2, 28)
        ))

        assert occurrences == []

    def test_monthly_frequency_is_month_interval(self):
        occurrences = list(occurrences_in_window(
            monthly(15, frequency=2), date(2026, 1, 1), date(2026, 12, 31)
        ))

        assert [o.local_date.month for o in occurrences] == [1, 3, 5, 7, 9, 11]

    def test_open_ended_series_is_lazy(self):
        """An open-ended pattern can be consumed incrementally."""
        stream = occurrences_in_window(daily(), date(2026, 3, 2), None)

        first_five = list(islice(stream, 5))

        assert len(first_five) == 5
        assert first_five[-1].local_date == date(2026, 3, 6)

    def test_datetime_bounds_compare_instants(self):
        """A naive datetime bound is treated as UTC."""
        occurrences = list(occurrences_in_window(
            daily(), datetime(2026, 3, 2, 8, 1), datetime(2026, 3, 4, 8, 0)
        ))

        assert [o.local_date for o in occurrences] == [date(2026, 3, 3), date(2026, 3, 4)]

    def test_same_input_same_output(self):
        pattern = weekly([1, 3, 5])
        window = (date(2026, 3, 1), date(2026, 6, 1))

        assert list(occurrences_in_window(pattern, *window)) == \
            list(occurrences_in_window(pattern, *window))


class TestDaylightSaving:
    """Tests for DST transitions (America/New_York, 2026)."""

    def test_offset_follows_dst(self):
        pattern = daily(start=date(2026, 3, 7), at=time(9, 0), timezone='America/New_York')

        before, after = list(occurrences_in_window(pattern, date(2026, 3, 7), date(2026, 3, 8)))

        assert before.instant.hour == 14
        assert before.timezone_abbr == 'EST'
        assert after.instant.hour == 13
        assert after.timezone_abbr == 'EDT'

    def test_skipped_local_time_uses_pre_transition_offset(self):
        """02:30 does not exist on 2026-03-08; it resolves with the EST offset."""
        pattern = daily(start=date(2026, 3, 8), at=time(2, 30), timezone='America/New_York')

        occurrence = next(occurrences_in_window(pattern, date(2026, 3, 8), date(2026, 3, 8)))

        assert occurrence.instant == datetime(2026, 3, 8, 7, 30, tzinfo=timezone.utc)

    def test_ambiguous_local_time_uses_first_instant(self):
        """01:30 happens twice on 2026-11-01; the first (EDT) one is used."""
        pattern = daily(start=date(2026, 11, 1), at=time(1, 30), timezone='America/New_York')

        occurrence = next(occurrences_in_window(pattern, date(2026, 11, 1), date(2026, 11, 1)))

        assert occurrence.instant == datetime(2026, 11, 1, 5, 30, tzinfo=timezone.utc)


# ============================================================================
# Helpers
# ============================================================================

class TestNextOccurrence:
    """Tests for find_next_occurrence and is_series_active."""

    def test_next_is_inclusive(self):
        occurrence = find_next_occurrence(weekly([1, 3]), datetime(2026, 3, 2, 8, 0))

        assert occurrence.local_date == date(2026, 3, 2)

    def test_next_after_occurrence(self):
        occurrence = find_next_occurrence(weekly([1, 3]), datetime(2026, 3, 2, 8, 1))

        assert occurrence.local_date == date(2026, 3, 4)

    def test_none_after_series_end(self):
        pattern = weekly([1], end_date=date(2026, 3, 9))

        assert find_next_occurrence(pattern, datetime(2026, 3, 10)) is None

    def test_series_active(self):
        assert is_series_active(weekly([1]), date(2030, 1, 1)) is True
        assert is_series_active(weekly([1], end_date=date(2026, 3, 9)), date(2026, 3, 9)) is True
        assert is_series_active(weekly([1], end_date=date(2026, 3, 9)), date(2026, 3, 10)) is False


class TestInstanceIds:
    """Tests for deterministic instance ids."""

    def test_round_trip(self):
        instance_id = instance_id_for('tpl_01hgw2bbg0000000000000001', date(2026, 3, 2))

        assert instance_id == 'tpl_01hgw2bbg0000000000000001_2026-03-02'
        assert parse_instance_id(instance_id) == ('tpl_01hgw2bbg0000000000000001', date(2026, 3, 2))

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_instance_id('2026-03-02')


class TestDisplay:
    """Tests for human-readable formatting."""

    @pytest.mark.parametrize("value,expected", [
        (time(0, 5), "12:05 AM"),
        (time(10, 0), "10:00 AM"),
        (time(12, 0), "12:00 PM"),
        (time(18, 30), "6:30 PM"),
    ])
    def test_format_time_12h(self, value, expected):
        assert format_time_12h(value) == expected

    def test_weekly_display(self):
        assert format_recurrence_display(weekly([1, 3])) == \
            "Every Monday, Wednesday at 10:00 AM SAST"

    def test_biweekly_display(self):
        pattern = weekly([5], at=time(18, 30), frequency=2)

        assert format_recurrence_display(pattern) == "Every 2 weeks on Friday at 6:30 PM SAST"

    def test_daily_display(self):
        assert format_recurrence_display(daily()) == "Every day at 10:00 AM SAST"
        assert format_recurrence_display(
            daily(start=date(2026, 1, 5), at=time(9, 0), frequency=3, timezone='Europe/Paris')
        ) == "Every 3 days at 9:00 AM CET"

    def test_monthly_display(self):
        assert format_recurrence_display(monthly(15)) == "Monthly on day 15 at 7:00 PM SAST"
        assert format_recurrence_display(monthly(1, frequency=2)) == \
            "Every 2 months on day 1 at 7:00 PM SAST"
