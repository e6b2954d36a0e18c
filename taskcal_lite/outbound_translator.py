"""Outbound recurrence translation for third-party calendar services - taskcal_lite.

Converts a RuleModel plus its exception set into the recurrence fields of a
calendar service event: an ``RRULE:`` line without DTSTART, one date-only
``EXDATE:`` entry per completed or skipped instance, and the anchor date/time
as the event start.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from .exceptions import CompatibilityError
from .lite_models import ExceptionSet, Frequency, RecurrencePayload, RuleModel, TaskRecord
from .lite_rrule_parser import parse_rule_text, rule_to_string

logger = logging.getLogger(__name__)

SUPPORTED_FREQUENCIES = frozenset({Frequency.DAILY, Frequency.WEEKLY, Frequency.MONTHLY, Frequency.YEARLY})
UNSUPPORTED_PARTS = ("BYSECOND", "BYMINUTE", "BYHOUR")


class OutboundRecurrenceTranslator:
    """Translates recurrence rules into a calendar service's recurrence format."""

    def check_compatibility(self, rule: RuleModel) -> Optional[CompatibilityError]:
        """Return a CompatibilityError naming the first unsupported feature, or None."""
        if rule.frequency not in SUPPORTED_FREQUENCIES:
            part = f"FREQ={rule.frequency.value}"
            return CompatibilityError(f"Unsupported recurrence frequency: {part}", unsupported_part=part)
        for part in UNSUPPORTED_PARTS:
            if part in rule.extra_parts:
                return CompatibilityError(f"Unsupported recurrence part: {part}", unsupported_part=part)
        return None

    def translate(
        self,
        rule: RuleModel,
        exceptions: Optional[ExceptionSet] = None,
    ) -> Union[RecurrencePayload, CompatibilityError]:
        """Translate a rule and its exceptions.

        Args:
            rule: Rule to export
            exceptions: Completed/skipped dates, emitted as EXDATE entries

        Returns:
            RecurrencePayload, or the CompatibilityError describing why the rule
            cannot be exported. Callers must branch on the result type.
        """
        error = self.check_compatibility(rule)
        if error is not None:
            logger.info("Rule %r not exportable: %s", rule_to_string(rule), error)
            return error

        exceptions = exceptions or ExceptionSet()
        anchor = rule.anchor
        return RecurrencePayload(
            rule_string=f"RRULE:{rule_to_string(rule)}",
            exception_dates=exceptions.excluded,
            anchor_date=rule.anchor_date,
            anchor_time=anchor.time() if isinstance(anchor, datetime) else None,
        )

    def translate_or_raise(
        self,
        rule: RuleModel,
        exceptions: Optional[ExceptionSet] = None,
    ) -> RecurrencePayload:
        """Same as ``translate`` but raises the CompatibilityError.

        Raises:
            CompatibilityError: If the rule uses an unsupported feature
        """
        result = self.translate(rule, exceptions)
        if isinstance(result, CompatibilityError):
            raise result
        return result

    @staticmethod
    def should_sync_as_recurring(task: TaskRecord) -> bool:
        """Only schedule-anchored recurrences export as recurring events.

        Completion-anchored tasks move their next date when completed, which a
        fixed rule on the calendar side cannot follow.
        """
        return bool(task.recurrence) and task.recurrence_anchor == "scheduled"

    def translate_task(self, task: TaskRecord) -> Union[RecurrencePayload, CompatibilityError, None]:
        """Translate a task's recurrence; None when it does not sync as recurring.

        Raises:
            RuleValidationError: If the task's rule text cannot be parsed
        """
        if not self.should_sync_as_recurring(task):
            return None
        anchor = task.scheduled if task.scheduled is not None else task.due
        rule = parse_rule_text(task.recurrence or "", anchor=anchor)
        return self.translate(rule, task.exceptions)

    def recurrence_update(
        self, task: TaskRecord, previous: Optional[TaskRecord] = None
    ) -> Union[list[str], CompatibilityError, None]:
        """Recurrence field to send when updating the task's calendar event.

        Returns:
            The recurrence lines while the task syncs as recurring, an empty
            list when ``previous`` did and the task no longer does (the service
            only drops a series on an explicit empty list), or None when the
            field should be left out of the update

        Raises:
            RuleValidationError: If the task's rule text cannot be parsed
        """
        result = self.translate_task(task)
        if isinstance(result, RecurrencePayload):
            return result.recurrence
        if result is not None:
            return result
        if previous is not None and self.should_sync_as_recurring(previous):
            logger.debug("Recurrence removed from %s; clearing series", task.path)
            return []
        return None

    def build_event_body(
        self,
        payload: RecurrencePayload,
        title: str,
        duration_minutes: int = 60,
        timezone: Optional[str] = None,
        all_day: bool = False,
    ) -> dict[str, Any]:
        """Build a calendar service event body for a recurring series.

        All-day series (or payloads without an anchor time) use date-only
        start/end with the exclusive end on the following day; timed series
        end ``duration_minutes`` after the anchor time.

        Args:
            payload: Translated recurrence
            title: Event summary
            duration_minutes: Length of timed occurrences
            timezone: IANA zone name attached to timed start/end
            all_day: Force an all-day series

        Returns:
            Mapping with ``summary``, ``start``, ``end`` and ``recurrence``
        """
        anchor_time = payload.anchor_time
        if all_day or anchor_time is None:
            start: dict[str, str] = {"date": payload.anchor_date.isoformat()}
            end: dict[str, str] = {"date": (payload.anchor_date + timedelta(days=1)).isoformat()}
        else:
            start_dt = datetime.combine(payload.anchor_date, anchor_time)
            end_dt = start_dt + timedelta(minutes=duration_minutes)
            start = {"dateTime": start_dt.strftime("%Y-%m-%dT%H:%M:%S")}
            end = {"dateTime": end_dt.strftime("%Y-%m-%dT%H:%M:%S")}
            if timezone:
                start["timeZone"] = timezone
                end["timeZone"] = timezone

        return {
            "summary": title,
            "start": start,
            "end": end,
            "recurrence": payload.recurrence,
        }
