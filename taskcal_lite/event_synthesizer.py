"""Calendar occurrence synthesis - taskcal_lite.

Turns task records and feed events into the ordered, typed and colored
Occurrence list a calendar view renders for one visible window.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

from .colors import ColorResolver
from .config_loader import DEFAULT_PRIORITY_COLORS, DEFAULT_STATUS_COLORS, Config
from .exceptions import RuleValidationError
from .lite_datetime_utils import DateLike, combine_with_anchor_time, is_all_day, local_date, to_instant
from .lite_models import (
    DateWindow,
    FeedEvent,
    Occurrence,
    OccurrenceKind,
    TaskRecord,
    VisibilityOptions,
)
from .lite_reference_parser import references_match
from .lite_rrule_expander import RecurrenceRuleEngine
from .lite_rrule_parser import extract_anchor, parse_rule_text
from .timezone_utils import resolve_timezone

logger = logging.getLogger(__name__)

DUE_LABEL_PREFIX = "Due: "


class EventSynthesizer:
    """Builds Occurrence lists from tasks and feed events.

    Stateless between calls: every ``synthesize`` recomputes from its inputs.
    """

    def __init__(
        self,
        engine: Optional[RecurrenceRuleEngine] = None,
        colors: Optional[ColorResolver] = None,
        color_by: str = "priority",
        priority_colors: Optional[dict[str, str]] = None,
        status_colors: Optional[dict[str, str]] = None,
        timezone: Optional[tzinfo] = None,
    ):
        """Initialize synthesizer.

        Args:
            engine: Recurrence engine for task rules
            colors: Color resolver (palette, default color, fill opacity)
            color_by: Category used for task colors, ``priority`` or ``status``
            priority_colors: Priority value -> color
            status_colors: Status value -> color
            timezone: Zone in which all-day occurrences start (local midnight)
        """
        self.engine = engine or RecurrenceRuleEngine()
        self.colors = colors or ColorResolver()
        self.color_by = color_by
        self.priority_colors = {k.lower(): v for k, v in (priority_colors or DEFAULT_PRIORITY_COLORS).items()}
        self.status_colors = {k.lower(): v for k, v in (status_colors or DEFAULT_STATUS_COLORS).items()}
        self.timezone = timezone or resolve_timezone(None)

    @classmethod
    def from_config(cls, config: Config) -> "EventSynthesizer":
        return cls(
            engine=RecurrenceRuleEngine(max_periods=config.max_periods),
            colors=ColorResolver(
                palette=config.palette,
                default_color=config.default_color,
                fill_opacity=config.fill_opacity,
            ),
            color_by=config.color_by,
            priority_colors=config.priority_colors,
            status_colors=config.status_colors,
            timezone=resolve_timezone(config.timezone),
        )

    def synthesize(
        self,
        tasks: Iterable[TaskRecord],
        feed_events: Iterable[FeedEvent],
        window: DateWindow,
        visibility: Optional[VisibilityOptions] = None,
        subscription_colors: Optional[dict[str, str]] = None,
    ) -> list[Occurrence]:
        """Produce the occurrences visible in ``window``.

        Args:
            tasks: Task records
            feed_events: Events of enabled subscriptions (instances already materialized)
            window: Visible date window (inclusive)
            visibility: Per-kind toggles, custom property fields and project filter
            subscription_colors: Subscription id -> color for feed events

        Returns:
            Occurrences ordered by start, kind precedence and source id
        """
        visibility = visibility or VisibilityOptions()
        occurrences: list[Occurrence] = []

        for task in tasks:
            if visibility.project is not None and not any(
                references_match(project, visibility.project) for project in task.projects
            ):
                continue
            occurrences.extend(self._task_occurrences(task, window, visibility))

        if visibility.show_feed_events:
            colors = subscription_colors or {}
            for event in feed_events:
                occurrences.append(self._feed_occurrence(event, colors.get(event.subscription_id)))

        visible = [o for o in occurrences if self._in_window(o, window)]
        visible.sort(key=self._sort_key)
        logger.debug(
            "Synthesized %d occurrences (%d before window filter) for %s..%s",
            len(visible),
            len(occurrences),
            window.start,
            window.end,
        )
        return visible

    # Tasks

    def category_color(self, task: TaskRecord) -> Optional[str]:
        """Configured color value of the task's priority or status, if any."""
        if self.color_by == "status":
            return self.status_colors.get((task.status or "").lower())
        return self.priority_colors.get((task.priority or "").lower())

    def _task_occurrences(
        self, task: TaskRecord, window: DateWindow, visibility: VisibilityOptions
    ) -> list[Occurrence]:
        border, fill = self.colors.colors_for(self.category_color(task))
        result: list[Occurrence] = []

        def occurrence(kind: OccurrenceKind, start: DateLike, **extra: object) -> Occurrence:
            fields: dict[str, object] = {
                "source_id": task.path,
                "kind": kind,
                "start": start,
                "all_day": is_all_day(start),
                "border_color": border,
                "fill_color": fill,
                "label": task.title,
            }
            fields.update(extra)
            return Occurrence(**fields)  # type: ignore[arg-type]

        if visibility.show_due and task.due is not None:
            result.append(occurrence(OccurrenceKind.DUE, task.due, label=f"{DUE_LABEL_PREFIX}{task.title}"))

        if visibility.show_scheduled and task.scheduled is not None:
            result.append(
                occurrence(
                    OccurrenceKind.SCHEDULED,
                    task.scheduled,
                    end=self._estimated_end(task.scheduled, task.time_estimate),
                )
            )

        if visibility.show_recurring and task.recurrence:
            for start, instance_day, completed in self._recurring_starts(task, window):
                result.append(
                    occurrence(
                        OccurrenceKind.RECURRING_INSTANCE,
                        start,
                        end=self._estimated_end(start, task.time_estimate),
                        completed=completed,
                        instance_date=instance_day,
                    )
                )

        if visibility.show_time_entries:
            for entry in task.time_entries:
                if entry.end is None:
                    # Running timer
                    continue
                result.append(
                    occurrence(
                        OccurrenceKind.TIME_ENTRY,
                        entry.start,
                        end=entry.end,
                        label=entry.description or task.title,
                    )
                )

        for name in visibility.property_fields:
            value = task.date_properties.get(name)
            if value is not None:
                result.append(occurrence(OccurrenceKind.PROPERTY_BASED, value, label=f"{name}: {task.title}"))

        return result

    def _recurring_starts(self, task: TaskRecord, window: DateWindow) -> list[tuple[DateLike, date, bool]]:
        fallback_anchor = task.scheduled if task.scheduled is not None else task.due
        try:
            rule = parse_rule_text(task.recurrence or "", anchor=fallback_anchor)
        except RuleValidationError as e:
            logger.warning("Task %s has an unusable recurrence %r: %s", task.path, task.recurrence, e)
            anchor = extract_anchor(task.recurrence or "") or fallback_anchor
            if anchor is None:
                return []
            # Shown once at its anchor, like the engine's invalid-rule fallback
            day = local_date(anchor)
            exceptions = task.exceptions
            if day in exceptions.skipped:
                return []
            return [(anchor, day, day in exceptions.completed)]

        return [
            (combine_with_anchor_time(item.day, rule.anchor), item.day, item.completed)
            for item in self.engine.expand(rule, task.exceptions, window)
        ]

    @staticmethod
    def _estimated_end(start: DateLike, minutes: Optional[int]) -> Optional[DateLike]:
        if minutes and isinstance(start, datetime):
            return start + timedelta(minutes=minutes)
        return None

    # Feed events

    def _feed_occurrence(self, event: FeedEvent, color: Optional[str]) -> Occurrence:
        border, fill = self.colors.colors_for(color)
        return Occurrence(
            source_id=event.id,
            kind=OccurrenceKind.PROPERTY_BASED,
            start=event.start,
            end=event.end,
            all_day=event.all_day,
            editable=False,
            border_color=border,
            fill_color=fill,
            label=event.title,
        )

    # Filtering and ordering

    def _in_window(self, occurrence: Occurrence, window: DateWindow) -> bool:
        first = local_date(occurrence.start, self.timezone)
        last = local_date(occurrence.end, self.timezone) if occurrence.end is not None else first
        return window.overlaps(first, max(first, last))

    def _sort_key(self, occurrence: Occurrence) -> tuple[datetime, int, str]:
        return (
            to_instant(occurrence.start, self.timezone),
            occurrence.kind.precedence,
            occurrence.source_id,
        )
