"""
Unit tests for taskcal_lite.lite_rrule_expander

Covers:
- period walking for DAILY/WEEKLY/MONTHLY/YEARLY rules
- positional BYDAY and BYSETPOS equivalence
- COUNT/UNTIL, exceptions and window filtering
- fallback to the anchor date for unsupported rules
"""

from datetime import date

import pytest

from taskcal_lite.exceptions import RuleValidationError
from taskcal_lite.lite_models import DateWindow, ExceptionSet, RecurrenceDate
from taskcal_lite.lite_rrule_expander import (
    RecurrenceRuleEngine,
    nth_weekday_of_period,
    set_position_select,
)
from taskcal_lite.lite_rrule_parser import parse_rule_text

pytestmark = pytest.mark.unit


def _days(text: str, window: DateWindow, exceptions: ExceptionSet | None = None) -> list[date]:
    engine = RecurrenceRuleEngine()
    return [item.day for item in engine.expand(parse_rule_text(text), exceptions, window)]


class TestPeriodHelpers:
    def test_nth_weekday_of_period_positive_and_negative(self) -> None:
        start, end = date(2025, 1, 1), date(2025, 1, 31)

        assert nth_weekday_of_period(start, end, 0, 2) == date(2025, 1, 13)
        assert nth_weekday_of_period(start, end, 0, -1) == date(2025, 1, 27)
        assert nth_weekday_of_period(start, end, 4, -2) == date(2025, 1, 24)

    def test_nth_weekday_of_period_when_too_few_then_none(self) -> None:
        # January 2025 has four Mondays
        assert nth_weekday_of_period(date(2025, 1, 1), date(2025, 1, 31), 0, 5) is None
        assert nth_weekday_of_period(date(2025, 1, 1), date(2025, 1, 31), 0, 0) is None

    def test_set_position_select(self) -> None:
        candidates = [date(2025, 1, 6), date(2025, 1, 13), date(2025, 1, 20)]

        assert set_position_select(candidates, 1) == date(2025, 1, 6)
        assert set_position_select(candidates, -1) == date(2025, 1, 20)
        assert set_position_select(candidates, 4) is None
        assert set_position_select(candidates, -4) is None


class TestMonthlyRules:
    def test_second_monday_every_month(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 6, 30))

        assert _days("DTSTART:20250113;FREQ=MONTHLY;BYDAY=2MO", window) == [
            date(2025, 1, 13),
            date(2025, 2, 10),
            date(2025, 3, 10),
            date(2025, 4, 14),
            date(2025, 5, 12),
            date(2025, 6, 9),
        ]

    def test_last_friday_every_month(self, year_2025: DateWindow) -> None:
        days = _days("DTSTART:20250131;FREQ=MONTHLY;BYDAY=-1FR", year_2025)

        assert len(days) == 12
        for day in days:
            assert day.weekday() == 4
            assert day.day >= 22

    def test_bysetpos_matches_positional_weekday(self, year_2025: DateWindow) -> None:
        positional = _days("DTSTART:20250113;FREQ=MONTHLY;BYDAY=2MO", year_2025)
        set_position = _days("DTSTART:20250113;FREQ=MONTHLY;BYDAY=MO;BYSETPOS=2", year_2025)

        assert positional == set_position

    def test_bysetpos_counts_dates_before_anchor_in_first_period(self) -> None:
        """The set position selects from the whole period even when the anchor is mid-month."""
        window = DateWindow(date(2025, 1, 1), date(2025, 3, 31))

        assert _days("DTSTART:20250115;FREQ=MONTHLY;BYDAY=MO;BYSETPOS=2", window) == [
            date(2025, 2, 10),
            date(2025, 3, 10),
        ]

    def test_last_weekday_of_month_with_bysetpos(self) -> None:
        window = DateWindow(date(2025, 5, 1), date(2025, 8, 31))

        assert _days("DTSTART:20250501;FREQ=MONTHLY;BYDAY=MO,TU,WE,TH,FR;BYSETPOS=-1", window) == [
            date(2025, 5, 30),
            date(2025, 6, 30),
            date(2025, 7, 31),
            date(2025, 8, 29),
        ]

    def test_month_day_31_skips_short_months(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 6, 30))

        assert _days("DTSTART:20250131;FREQ=MONTHLY", window) == [
            date(2025, 1, 31),
            date(2025, 3, 31),
            date(2025, 5, 31),
        ]

    def test_negative_month_day_is_month_end(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 4, 30))

        assert _days("DTSTART:20250131;FREQ=MONTHLY;BYMONTHDAY=-1", window) == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
            date(2025, 4, 30),
        ]


class TestWeeklyAndDailyRules:
    def test_weekly_multiple_weekdays_with_interval(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))

        assert _days("DTSTART:20250106;FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE", window) == [
            date(2025, 1, 6),
            date(2025, 1, 8),
            date(2025, 1, 20),
            date(2025, 1, 22),
        ]

    def test_weekly_without_byday_uses_anchor_weekday(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))

        assert _days("DTSTART:20250108;FREQ=WEEKLY", window) == [
            date(2025, 1, 8),
            date(2025, 1, 15),
            date(2025, 1, 22),
            date(2025, 1, 29),
        ]

    def test_count_includes_occurrences_before_window(self) -> None:
        window = DateWindow(date(2025, 1, 3), date(2025, 1, 31))

        assert _days("DTSTART:20250101;FREQ=DAILY;COUNT=5", window) == [
            date(2025, 1, 3),
            date(2025, 1, 4),
            date(2025, 1, 5),
        ]

    def test_until_date_is_inclusive(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))

        assert _days("DTSTART:20250101;FREQ=DAILY;UNTIL=20250104", window) == [
            date(2025, 1, 1),
            date(2025, 1, 2),
            date(2025, 1, 3),
            date(2025, 1, 4),
        ]

    def test_until_datetime_compares_against_anchor_time(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))

        inclusive = _days("DTSTART:20250106T090000Z;FREQ=DAILY;UNTIL=20250108T090000Z", window)
        earlier = _days("DTSTART:20250106T090000Z;FREQ=DAILY;UNTIL=20250108T085959Z", window)

        assert inclusive == [date(2025, 1, 6), date(2025, 1, 7), date(2025, 1, 8)]
        assert earlier == [date(2025, 1, 6), date(2025, 1, 7)]

    def test_window_far_after_anchor(self) -> None:
        window = DateWindow(date(2025, 3, 1), date(2025, 3, 31))

        assert _days("DTSTART:20000115;FREQ=MONTHLY", window) == [date(2025, 3, 15)]


class TestYearlyRules:
    def test_last_monday_of_may(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2027, 12, 31))

        assert _days("DTSTART:20250526;FREQ=YEARLY;BYMONTH=5;BYDAY=-1MO", window) == [
            date(2025, 5, 26),
            date(2026, 5, 25),
            date(2027, 5, 31),
        ]

    def test_leap_day_only_in_leap_years(self) -> None:
        window = DateWindow(date(2024, 1, 1), date(2028, 12, 31))

        assert _days("DTSTART:20240229;FREQ=YEARLY", window) == [date(2024, 2, 29), date(2028, 2, 29)]


class TestExceptions:
    def test_completed_flagged_and_skipped_removed(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))
        exceptions = ExceptionSet(completed=(date(2025, 1, 13),), skipped=(date(2025, 1, 20),))
        rule = parse_rule_text("DTSTART:20250106;FREQ=WEEKLY;BYDAY=MO")

        result = RecurrenceRuleEngine().expand(rule, exceptions, window)

        assert result == [
            RecurrenceDate(date(2025, 1, 6)),
            RecurrenceDate(date(2025, 1, 13), completed=True),
            RecurrenceDate(date(2025, 1, 27)),
        ]

    def test_skipped_date_still_consumes_count(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 3, 31))
        exceptions = ExceptionSet(skipped=(date(2025, 1, 13),))

        assert _days("DTSTART:20250106;FREQ=WEEKLY;COUNT=3", window, exceptions) == [
            date(2025, 1, 6),
            date(2025, 1, 20),
        ]

    def test_exception_dates_not_in_rule_are_ignored(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))
        exceptions = ExceptionSet(completed=(date(2025, 1, 7),), skipped=(date(2025, 1, 8),))

        assert _days("DTSTART:20250106;FREQ=WEEKLY", window, exceptions) == [
            date(2025, 1, 6),
            date(2025, 1, 13),
            date(2025, 1, 20),
            date(2025, 1, 27),
        ]


class TestValidationAndFallback:
    @pytest.mark.parametrize(
        "text",
        [
            "DTSTART:20250106;FREQ=HOURLY",
            "DTSTART:20250106;FREQ=DAILY;BYHOUR=9",
            "DTSTART:20250106;FREQ=WEEKLY;BYDAY=2MO",
            "DTSTART:20250106;FREQ=MONTHLY;BYSETPOS=1",
            "DTSTART:20250106;FREQ=MONTHLY;BYDAY=1MO,1TU;BYSETPOS=1",
        ],
    )
    def test_validate_rejects_unsupported(self, text: str) -> None:
        with pytest.raises(RuleValidationError):
            RecurrenceRuleEngine().validate(parse_rule_text(text))

    def test_expand_when_unsupported_then_anchor_only(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))

        assert _days("DTSTART:20250106;FREQ=HOURLY", window) == [date(2025, 1, 6)]

    def test_expand_when_unsupported_and_anchor_skipped_then_empty(self) -> None:
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))
        exceptions = ExceptionSet(skipped=(date(2025, 1, 6),))

        assert _days("DTSTART:20250106;FREQ=HOURLY", window, exceptions) == []

    def test_period_ceiling_raises_in_strict_mode(self) -> None:
        engine = RecurrenceRuleEngine(max_periods=5)
        rule = parse_rule_text("DTSTART:20250101;FREQ=DAILY")
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 31))

        with pytest.raises(RuleValidationError, match="exceeded"):
            engine.expand_strict(rule, None, window)
        assert engine.expand(rule, None, window) == [RecurrenceDate(date(2025, 1, 1))]

    def test_expand_is_idempotent(self, year_2025: DateWindow) -> None:
        engine = RecurrenceRuleEngine()
        rule = parse_rule_text("DTSTART:20250113;FREQ=MONTHLY;BYDAY=2MO")
        exceptions = ExceptionSet(completed=(date(2025, 2, 10),))

        assert engine.expand(rule, exceptions, year_2025) == engine.expand(rule, exceptions, year_2025)

    def test_results_sorted_and_unique(self, year_2025: DateWindow) -> None:
        days = _days("DTSTART:20250101;FREQ=MONTHLY;BYMONTHDAY=1,15,-1", year_2025)

        assert days == sorted(set(days))
        assert len(days) == 36
