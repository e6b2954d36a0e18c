"""Recurrence expansion for taskcal_lite.

Expands a RuleModel into concrete local calendar dates inside a window. The
expansion walks rule periods (day, week, month or year) from the anchor's
period, enumerates the matching dates of each period in ascending order and
then applies BYSETPOS, COUNT/UNTIL, exceptions and the window, in that order.
"""

import calendar
import logging
from collections.abc import Iterator
from datetime import UTC, date, datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from .exceptions import RuleValidationError
from .lite_models import DateWindow, ExceptionSet, Frequency, RecurrenceDate, RuleModel
from .lite_rrule_parser import rule_to_string

logger = logging.getLogger(__name__)

DEFAULT_MAX_PERIODS = 10000


def nth_weekday_of_period(start: date, end: date, weekday: int, n: int) -> Optional[date]:
    """Return the Nth ``weekday`` between ``start`` and ``end`` (inclusive).

    Args:
        start: First day of the period
        end: Last day of the period
        weekday: Weekday to look for (Monday=0)
        n: 1-based position; negative values count back from ``end``

    Returns:
        The matching date, or None when the period has fewer than ``|n|`` matches
    """
    if n == 0:
        return None
    if n > 0:
        first = start + timedelta(days=(weekday - start.weekday()) % 7)
        candidate = first + timedelta(weeks=n - 1)
        return candidate if candidate <= end else None
    last = end - timedelta(days=(end.weekday() - weekday) % 7)
    candidate = last + timedelta(weeks=n + 1)
    return candidate if candidate >= start else None


def set_position_select(candidates: list[date], position: int) -> Optional[date]:
    """Pick the item at a BYSETPOS ``position`` from an ascending candidate set.

    Positive positions are 1-based from the start, negative ones count from the
    end. Returns None when the set is too small.
    """
    if position > 0 and position <= len(candidates):
        return candidates[position - 1]
    if position < 0 and -position <= len(candidates):
        return candidates[position]
    return None


def _month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def _resolve_month_day(value: int, year: int, month: int) -> Optional[int]:
    """Map a signed BYMONTHDAY value onto a day of the given month."""
    days_in_month = calendar.monthrange(year, month)[1]
    day = value if value > 0 else days_in_month + value + 1
    return day if 1 <= day <= days_in_month else None


class RecurrenceRuleEngine:
    """Expands recurrence rules into RecurrenceDate lists.

    The engine is stateless apart from its iteration ceiling and can be shared
    across tasks and feeds.
    """

    def __init__(self, max_periods: int = DEFAULT_MAX_PERIODS):
        """Initialize engine.

        Args:
            max_periods: Maximum number of rule periods walked per expansion
        """
        self.max_periods = max_periods

    def validate(self, rule: RuleModel) -> None:
        """Check that ``rule`` lies inside the expandable subset.

        Raises:
            RuleValidationError: If the rule cannot be expanded
        """
        if rule.frequency.is_sub_daily:
            raise RuleValidationError(f"Unsupported frequency: FREQ={rule.frequency.value}")
        if rule.extra_parts:
            names = ", ".join(sorted(rule.extra_parts))
            raise RuleValidationError(f"Unsupported rule parts: {names}")
        if rule.has_positional_weekday and rule.frequency in (Frequency.DAILY, Frequency.WEEKLY):
            raise RuleValidationError(
                f"Positional BYDAY is not valid with FREQ={rule.frequency.value}"
            )
        if rule.by_set_position is not None and not (rule.by_weekday or rule.by_month_day):
            raise RuleValidationError("BYSETPOS requires BYDAY or BYMONTHDAY")
        if (
            rule.by_set_position is not None
            and rule.has_positional_weekday
            and len(rule.by_weekday) > 1
        ):
            raise RuleValidationError(
                "Positional BYDAY with several weekdays and BYSETPOS is ambiguous"
            )

    def expand(
        self,
        rule: RuleModel,
        exceptions: Optional[ExceptionSet],
        window: DateWindow,
    ) -> list[RecurrenceDate]:
        """Expand ``rule`` into the dates that fall inside ``window``.

        Invalid or unsupported rules never raise here: a warning is logged and
        the anchor date alone is returned, so the task still shows up once.

        Args:
            rule: Rule to expand
            exceptions: Completed/skipped dates (None for no exceptions)
            window: Inclusive date window

        Returns:
            Ascending, unique RecurrenceDate list
        """
        exceptions = exceptions or ExceptionSet()
        try:
            return self.expand_strict(rule, exceptions, window)
        except RuleValidationError as e:
            logger.warning(
                "Cannot expand recurrence %r: %s; showing anchor date only",
                rule_to_string(rule),
                e,
            )
            anchor_day = rule.anchor_date
            if anchor_day in exceptions.skipped:
                return []
            return [RecurrenceDate(anchor_day, completed=anchor_day in exceptions.completed)]

    def expand_strict(
        self,
        rule: RuleModel,
        exceptions: Optional[ExceptionSet],
        window: DateWindow,
    ) -> list[RecurrenceDate]:
        """Same as ``expand`` but raises instead of falling back.

        Raises:
            RuleValidationError: If the rule is unsupported or exceeds the period ceiling
        """
        self.validate(rule)
        exceptions = exceptions or ExceptionSet()
        skipped = set(exceptions.skipped)
        completed = set(exceptions.completed)

        results: list[RecurrenceDate] = []
        for day in self._selected_dates(rule, window):
            if day in skipped or not window.contains(day):
                continue
            results.append(RecurrenceDate(day, completed=day in completed))

        logger.debug(
            "Expanded %s into %d dates for %s..%s",
            rule_to_string(rule),
            len(results),
            window.start,
            window.end,
        )
        return results

    # Period walking

    def _selected_dates(self, rule: RuleModel, window: DateWindow) -> Iterator[date]:
        """Yield dates selected by the rule (after COUNT/UNTIL) up to the window end."""
        anchor_day = rule.anchor_date
        base = self._period_start(rule, anchor_day)
        first_index = 0 if rule.count is not None else self._first_index(rule, base, window.start)

        emitted = 0
        walked = 0
        index = first_index
        while True:
            try:
                period_start = self._nth_period(rule, base, index)
            except (OverflowError, ValueError):
                logger.debug("Recurrence iteration reached the end of the calendar")
                return
            if period_start > window.end:
                return

            walked += 1
            if walked > self.max_periods:
                raise RuleValidationError(
                    f"Expansion exceeded {self.max_periods} periods for {rule_to_string(rule)}"
                )

            for day in self._period_dates(rule, period_start):
                if day < anchor_day:
                    continue
                if rule.until is not None and not self._within_until(rule, day):
                    return
                yield day
                emitted += 1
                if rule.count is not None and emitted >= rule.count:
                    return
            index += 1

    @staticmethod
    def _period_start(rule: RuleModel, day: date) -> date:
        if rule.frequency is Frequency.WEEKLY:
            return day - timedelta(days=(day.weekday() - rule.week_start) % 7)
        if rule.frequency is Frequency.MONTHLY:
            return day.replace(day=1)
        if rule.frequency is Frequency.YEARLY:
            return day.replace(month=1, day=1)
        return day

    @staticmethod
    def _nth_period(rule: RuleModel, base: date, index: int) -> date:
        step = index * rule.interval
        if rule.frequency is Frequency.DAILY:
            return base + timedelta(days=step)
        if rule.frequency is Frequency.WEEKLY:
            return base + timedelta(weeks=step)
        if rule.frequency is Frequency.MONTHLY:
            return base + relativedelta(months=step)
        return base + relativedelta(years=step)

    @staticmethod
    def _first_index(rule: RuleModel, base: date, window_start: date) -> int:
        """Index of the last period starting on or before ``window_start``."""
        if window_start <= base:
            return 0
        if rule.frequency is Frequency.DAILY:
            return (window_start - base).days // rule.interval
        if rule.frequency is Frequency.WEEKLY:
            return (window_start - base).days // (7 * rule.interval)
        if rule.frequency is Frequency.MONTHLY:
            months = (window_start.year - base.year) * 12 + window_start.month - base.month
            return months // rule.interval
        return (window_start.year - base.year) // rule.interval

    def _period_dates(self, rule: RuleModel, period_start: date) -> list[date]:
        """Ascending dates of one period that match the rule, after BYSETPOS."""
        if rule.frequency is Frequency.DAILY:
            period_end = period_start
        elif rule.frequency is Frequency.WEEKLY:
            period_end = period_start + timedelta(days=6)
        elif rule.frequency is Frequency.MONTHLY:
            period_end = _month_end(period_start)
        else:
            period_end = period_start.replace(month=12, day=31)

        candidates = []
        day = period_start
        while day <= period_end:
            if self._matches(rule, day):
                candidates.append(day)
            day += timedelta(days=1)

        if rule.by_set_position is not None:
            selected = set_position_select(candidates, rule.by_set_position)
            return [selected] if selected is not None else []
        return candidates

    @staticmethod
    def _matches(rule: RuleModel, day: date) -> bool:
        if rule.by_month and day.month not in rule.by_month:
            return False

        if rule.by_month_day:
            days = {_resolve_month_day(v, day.year, day.month) for v in rule.by_month_day}
            if day.day not in days:
                return False

        if rule.by_weekday:
            return any(_weekday_matches(rule, spec.weekday, spec.position, day) for spec in rule.by_weekday)

        if rule.by_month_day:
            return True

        anchor_day = rule.anchor_date
        if rule.frequency is Frequency.WEEKLY:
            return day.weekday() == anchor_day.weekday()
        if rule.frequency is Frequency.MONTHLY:
            return day.day == anchor_day.day
        if rule.frequency is Frequency.YEARLY:
            if rule.by_month:
                return day.day == anchor_day.day
            return (day.month, day.day) == (anchor_day.month, anchor_day.day)
        return True

    @staticmethod
    def _within_until(rule: RuleModel, day: date) -> bool:
        until = rule.until
        anchor = rule.anchor
        if not isinstance(until, datetime):
            return day <= until
        if not isinstance(anchor, datetime):
            return day <= until.date()

        instant = datetime.combine(day, anchor.time(), tzinfo=anchor.tzinfo)
        if (instant.tzinfo is None) != (until.tzinfo is None):
            # Mixed naive/aware values: read the naive side as UTC
            if instant.tzinfo is None:
                instant = instant.replace(tzinfo=UTC)
            else:
                until = until.replace(tzinfo=UTC)
        return instant <= until


def _weekday_matches(rule: RuleModel, weekday: int, position: Optional[int], day: date) -> bool:
    if day.weekday() != weekday:
        return False
    if position is None:
        return True
    # Positional entries count within the month, or within the year for
    # YEARLY rules without BYMONTH
    if rule.frequency is Frequency.YEARLY and not rule.by_month:
        start, end = day.replace(month=1, day=1), day.replace(month=12, day=31)
    else:
        start, end = day.replace(day=1), _month_end(day)
    return nth_weekday_of_period(start, end, weekday, position) == day
