"""Event component parsing for subscribed ICS feeds - taskcal_lite.

Maps icalendar VEVENT components onto FeedEvent records. Recurrence expansion
of the resulting masters lives in lite_parser.
"""

import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfoNotFoundError

from icalendar import Event as ICalEvent

from .exceptions import FeedParseError, RuleValidationError
from .lite_datetime_utils import DateLike, local_date, zone_for_tzid
from .lite_models import CrossReference, FeedEvent, RuleModel
from .lite_reference_parser import normalize_reference
from .lite_rrule_parser import parse_rule_text

logger = logging.getLogger(__name__)

# Properties copied into FeedEvent.raw_properties
PASSTHROUGH_PROPERTIES = ("LOCATION", "DESCRIPTION", "URL", "STATUS")
# Properties normalized into CrossReference values
REFERENCE_PROPERTIES = ("URL", "RELATED-TO", "ATTACH")


def instance_id(uid: str, start: DateLike) -> str:
    """Deterministic id of one occurrence of a recurring event."""
    if isinstance(start, datetime):
        return f"{uid}_{start.strftime('%Y%m%dT%H%M%S')}"
    return f"{uid}_{start.strftime('%Y%m%d')}"


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def _align_zone(end: datetime, start: datetime) -> datetime:
    """Give a floating DTEND the zone of an aware DTSTART (or float it to match a floating start)."""
    if end.tzinfo is None and start.tzinfo is not None:
        return end.replace(tzinfo=start.tzinfo)
    if end.tzinfo is not None and start.tzinfo is None:
        return end.replace(tzinfo=None)
    return end


class FeedEventParser:
    """Parser for iCalendar VEVENT components into FeedEvent objects."""

    def decode_datetime(self, prop: Any) -> DateLike:
        """Decode a DTSTART/DTEND/RECURRENCE-ID style property.

        Naive datetimes carrying a TZID that icalendar could not resolve
        (Windows zone names without VTIMEZONE) are localized here.
        """
        value = prop.dt
        if isinstance(value, datetime) and value.tzinfo is None:
            tzid = getattr(prop, "params", {}).get("TZID")
            if tzid:
                try:
                    value = value.replace(tzinfo=zone_for_tzid(str(tzid)))
                except (ZoneInfoNotFoundError, ValueError):
                    logger.debug("Unknown TZID %r; keeping floating time", tzid)
        if not isinstance(value, date):
            raise FeedParseError(f"Unsupported date value: {value!r}")
        return value

    def parse_event_component(
        self,
        component: ICalEvent,
        subscription_id: str,
    ) -> Optional[FeedEvent]:
        """Parse a single VEVENT component into a FeedEvent.

        Args:
            component: iCalendar VEVENT component
            subscription_id: Owning subscription

        Returns:
            Parsed FeedEvent or None if the component cannot be mapped
        """
        uid = str(component.get("UID", "")).strip()
        try:
            start, end, all_day = self._parse_event_times(component)
        except FeedParseError as e:
            logger.warning("Skipping event %s in %s: %s", uid or "<no-uid>", subscription_id, e)
            return None

        if not uid:
            # Stable fallback so repeated refreshes produce the same ids
            uid = f"{subscription_id}-{instance_id('event', start)}"

        rule = self._parse_rule(component, uid, start)
        recurrence_id = component.get("RECURRENCE-ID")

        event_id = uid
        master_id = None
        if recurrence_id is not None:
            try:
                original = self.decode_datetime(recurrence_id)
            except FeedParseError as e:
                logger.warning("Skipping override of %s with bad RECURRENCE-ID: %s", uid, e)
                return None
            event_id = instance_id(uid, original)
            master_id = uid
            rule = None

        return FeedEvent(
            id=event_id,
            subscription_id=subscription_id,
            title=str(component.get("SUMMARY", "")).strip() or "Untitled event",
            start=start,
            end=end,
            all_day=all_day,
            rule=rule,
            raw_properties=self._extract_raw_properties(component),
            master_id=master_id,
            is_instance=master_id is not None,
            references=self._extract_references(component),
        )

    def _parse_event_times(
        self, component: ICalEvent
    ) -> tuple[DateLike, Optional[DateLike], bool]:
        """Parse start, end and all-day flag.

        All-day ends are converted from the exclusive DTEND to the inclusive
        last day, never earlier than the start.

        Raises:
            FeedParseError: If DTSTART is missing or unreadable
        """
        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise FeedParseError("event missing DTSTART")
        start = self.decode_datetime(dtstart)
        all_day = not isinstance(start, datetime)

        dtend = component.get("DTEND")
        duration = component.get("DURATION")
        end: Optional[DateLike] = None
        if dtend is not None:
            end = self.decode_datetime(dtend)
        elif duration is not None and isinstance(duration.dt, timedelta):
            end = start + duration.dt

        if all_day:
            if end is None:
                return start, start, True
            last_day = local_date(end) - timedelta(days=1)
            return start, max(last_day, start), True

        if end is not None and not isinstance(end, datetime):
            # Timed start with a date-only end: treat as ending that day
            end = None
        elif end is not None:
            end = _align_zone(end, start)
        return start, end, False

    def _parse_rule(self, component: ICalEvent, uid: str, start: DateLike) -> Optional[RuleModel]:
        rules = _as_list(component.get("RRULE"))
        if not rules:
            return None
        if len(rules) > 1:
            logger.warning("Event %s has %d RRULEs; only the first is used", uid, len(rules))
        prop = rules[0]
        text = prop.to_ical().decode("utf-8") if hasattr(prop, "to_ical") else str(prop)
        try:
            return parse_rule_text(text, anchor=start)
        except RuleValidationError as e:
            logger.warning("Event %s has an unreadable RRULE %r: %s", uid, text, e)
            return None

    def collect_exception_dates(self, component: ICalEvent, tz: Optional[tzinfo]) -> list[date]:
        """Collect EXDATE values as local dates in ``tz`` (the anchor's zone)."""
        dates: list[date] = []
        for exdate in _as_list(component.get("EXDATE")):
            for entry in getattr(exdate, "dts", []):
                try:
                    dates.append(local_date(self.decode_datetime(entry), tz))
                except FeedParseError as e:
                    logger.debug("Ignoring EXDATE entry: %s", e)
        return dates

    @staticmethod
    def _extract_raw_properties(component: ICalEvent) -> dict[str, str]:
        properties: dict[str, str] = {}
        for name in PASSTHROUGH_PROPERTIES:
            value = component.get(name)
            if value is not None and str(value).strip():
                properties[name.lower()] = str(value).strip()
        return properties

    @staticmethod
    def _extract_references(component: ICalEvent) -> tuple[CrossReference, ...]:
        references: list[CrossReference] = []
        for name in REFERENCE_PROPERTIES:
            for value in _as_list(component.get(name)):
                reference = normalize_reference(str(value))
                if reference is not None:
                    references.append(reference)
        return tuple(references)
