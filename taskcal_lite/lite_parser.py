"""ICS feed parsing and recurrence materialization - taskcal_lite."""

import logging
import re
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Optional

from icalendar import Calendar
from icalendar import Event as ICalEvent

from .exceptions import FeedParseError
from .lite_datetime_utils import combine_with_anchor_time, local_date
from .lite_event_parser import FeedEventParser, instance_id
from .lite_models import DateWindow, ExceptionSet, FeedEvent, RuleModel
from .lite_rrule_expander import RecurrenceRuleEngine
from .lite_rrule_parser import rule_to_string
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)

DEFAULT_EXPANSION_DAYS = 730

_VEVENT_BLOCK = re.compile(r"BEGIN:VEVENT\r?\n.*?END:VEVENT", re.DOTALL | re.IGNORECASE)
_VTIMEZONE_BLOCK = re.compile(r"BEGIN:VTIMEZONE\r?\n.*?END:VTIMEZONE", re.DOTALL | re.IGNORECASE)

_FALLBACK_HEADER = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//taskcal_lite//block fallback//EN\r\n"
_FALLBACK_FOOTER = "\r\nEND:VCALENDAR\r\n"


class ExternalFeedExpander:
    """Parses subscribed ICS feeds into FeedEvents with recurring instances materialized.

    Recurring masters are replaced by their instances inside a window of
    ``expansion_days`` either side of now. Overrides (RECURRENCE-ID) replace
    the instance they point at; cancelled overrides remove it.
    """

    def __init__(
        self,
        engine: Optional[RecurrenceRuleEngine] = None,
        expansion_days: int = DEFAULT_EXPANSION_DAYS,
        event_parser: Optional[FeedEventParser] = None,
    ):
        """Initialize feed expander.

        Args:
            engine: Recurrence engine (a default one is created when omitted)
            expansion_days: Days before and after now to materialize instances for
            event_parser: VEVENT parser (a default one is created when omitted)
        """
        self.engine = engine or RecurrenceRuleEngine()
        self.expansion_days = expansion_days
        self.event_parser = event_parser or FeedEventParser()

    def expansion_window(self) -> DateWindow:
        return DateWindow.around(now_utc().date(), self.expansion_days, self.expansion_days)

    def parse(self, raw_feed_text: str, subscription_id: str) -> list[FeedEvent]:
        """Parse raw ICS text into FeedEvents.

        Args:
            raw_feed_text: Feed content
            subscription_id: Subscription the events belong to

        Returns:
            Single events, materialized instances and overrides, in feed order

        Raises:
            FeedParseError: If the text contains no calendar or event content at all
        """
        components = self._load_components(raw_feed_text, subscription_id)
        window = self.expansion_window()

        masters: list[tuple[ICalEvent, FeedEvent]] = []
        overridden: dict[str, list[Any]] = defaultdict(list)
        events: list[FeedEvent] = []

        for component in components:
            try:
                event = self.event_parser.parse_event_component(component, subscription_id)
            except Exception as e:
                logger.warning(
                    "Skipping unreadable event %s in subscription %s: %s",
                    component.get("UID", "<no-uid>"),
                    subscription_id,
                    e,
                )
                continue
            if event is None:
                continue
            if event.is_instance:
                overridden[event.master_id or ""].append(component.get("RECURRENCE-ID"))
                if str(component.get("STATUS", "")).upper() == "CANCELLED":
                    logger.debug("Dropping cancelled override %s", event.id)
                    continue
                events.append(event)
            elif event.rule is not None:
                masters.append((component, event))
            else:
                events.append(event)

        for component, master in masters:
            try:
                events.extend(self._expand_master(component, master, overridden.get(master.id, []), window))
            except Exception as e:
                logger.warning(
                    "Failed to expand recurring event %s in subscription %s: %s",
                    master.id,
                    subscription_id,
                    e,
                )

        logger.debug(
            "Parsed %d events for subscription %s (%d recurring masters)",
            len(events),
            subscription_id,
            len(masters),
        )
        return events

    def _load_components(self, text: str, subscription_id: str) -> list[ICalEvent]:
        """Return the VEVENT components of a feed, falling back to per-block parsing."""
        if not text or not text.strip():
            raise FeedParseError(f"Empty feed for subscription {subscription_id}")
        upper = text.upper()
        if "BEGIN:VCALENDAR" not in upper and "BEGIN:VEVENT" not in upper:
            raise FeedParseError(f"No calendar data in feed for subscription {subscription_id}")

        try:
            calendar = Calendar.from_ical(text)
        except ValueError as e:
            logger.warning(
                "Feed for subscription %s failed to parse (%s); parsing event blocks individually",
                subscription_id,
                e,
            )
            return self._load_blocks(text, subscription_id)
        return list(calendar.walk("VEVENT"))

    def _load_blocks(self, text: str, subscription_id: str) -> list[ICalEvent]:
        blocks = _VEVENT_BLOCK.findall(text)
        if not blocks:
            raise FeedParseError(f"No parseable events in feed for subscription {subscription_id}")
        timezones = "\r\n".join(_VTIMEZONE_BLOCK.findall(text))
        prefix = _FALLBACK_HEADER + (timezones + "\r\n" if timezones else "")

        components: list[ICalEvent] = []
        for index, block in enumerate(blocks):
            try:
                calendar = Calendar.from_ical(prefix + block + _FALLBACK_FOOTER)
            except ValueError as e:
                logger.warning(
                    "Skipping malformed event block %d in subscription %s: %s",
                    index,
                    subscription_id,
                    e,
                )
                continue
            components.extend(calendar.walk("VEVENT"))
        return components

    def supported_rule(self, rule: RuleModel, uid: str) -> Optional[RuleModel]:
        """Reduce ``rule`` to the expandable subset.

        Returns:
            The rule (possibly with one unsupported modifier dropped), or None
            when only the base event should be shown
        """
        text = rule_to_string(rule)
        if rule.frequency.is_sub_daily:
            logger.warning("Event %s uses unsupported FREQ=%s; showing base event only", uid, rule.frequency.value)
            return None
        if rule.by_set_position is not None and rule.has_positional_weekday and len(rule.by_weekday) > 1:
            logger.warning("Event %s has an ambiguous rule %r; showing base event only", uid, text)
            return None

        unsupported = list(rule.extra_parts)
        if not unsupported:
            return rule
        if len(unsupported) > 1:
            logger.warning(
                "Event %s rule %r has unsupported parts %s; showing base event only",
                uid,
                text,
                ", ".join(unsupported),
            )
            return None
        logger.warning("Event %s rule %r: ignoring unsupported %s", uid, text, unsupported[0])
        return rule.without_parts(unsupported[0])

    def _expand_master(
        self,
        component: ICalEvent,
        master: FeedEvent,
        override_ids: list[Any],
        window: DateWindow,
    ) -> list[FeedEvent]:
        rule = self.supported_rule(master.rule, master.id) if master.rule is not None else None
        if rule is None:
            return [master]

        anchor_tz = master.start.tzinfo if isinstance(master.start, datetime) else None
        skipped = self.event_parser.collect_exception_dates(component, anchor_tz)
        for prop in override_ids:
            try:
                skipped.append(local_date(self.event_parser.decode_datetime(prop), anchor_tz))
            except FeedParseError as e:
                logger.debug("Ignoring RECURRENCE-ID of %s: %s", master.id, e)

        dates = self.engine.expand(rule, ExceptionSet(skipped=tuple(skipped)), window)
        return [self._instance(master, item.day) for item in dates]

    @staticmethod
    def _instance(master: FeedEvent, day: date) -> FeedEvent:
        start = combine_with_anchor_time(day, master.start)
        end = None
        if master.end is not None:
            if master.all_day:
                end = day + (local_date(master.end) - local_date(master.start))
            elif isinstance(master.start, datetime) and isinstance(master.end, datetime):
                end = start + (master.end - master.start)
        return master.model_copy(
            update={
                "id": instance_id(master.id, start),
                "start": start,
                "end": end,
                "rule": None,
                "master_id": master.id,
                "is_instance": True,
            }
        )


def expand_feed(raw_feed_text: str, subscription_id: str, expansion_days: int = DEFAULT_EXPANSION_DAYS) -> list[FeedEvent]:
    """Convenience wrapper around ExternalFeedExpander.parse."""
    return ExternalFeedExpander(expansion_days=expansion_days).parse(raw_feed_text, subscription_id)


