"""Data models for recurrence expansion and calendar synthesis - taskcal_lite."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DateLike = Union[datetime, date]

WEEKDAY_CODES: tuple[str, ...] = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")


class Frequency(str, Enum):
    """Recurrence frequency.

    Every RFC 5545 value is representable so that unsupported rules can be
    reported by name; only DAILY through YEARLY are expanded.
    """

    SECONDLY = "SECONDLY"
    MINUTELY = "MINUTELY"
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"

    @property
    def is_sub_daily(self) -> bool:
        return self in (Frequency.SECONDLY, Frequency.MINUTELY, Frequency.HOURLY)


class WeekdaySpec(BaseModel):
    """A BYDAY entry: weekday (Monday=0) with an optional signed position."""

    model_config = ConfigDict(frozen=True)

    weekday: int = Field(..., ge=0, le=6)
    position: Optional[int] = Field(default=None, ge=-53, le=53)

    @field_validator("position")
    @classmethod
    def _non_zero_position(cls, value: Optional[int]) -> Optional[int]:
        if value == 0:
            raise ValueError("BYDAY position must be non-zero")
        return value

    def __str__(self) -> str:
        code = WEEKDAY_CODES[self.weekday]
        return f"{self.position}{code}" if self.position is not None else code


class RuleModel(BaseModel):
    """Typed recurrence rule anchored at a start date or datetime."""

    model_config = ConfigDict(frozen=True)

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    by_weekday: tuple[WeekdaySpec, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_month: tuple[int, ...] = ()
    by_set_position: Optional[int] = None
    count: Optional[int] = Field(default=None, ge=1)
    until: Optional[DateLike] = None
    week_start: int = Field(default=0, ge=0, le=6)
    anchor: DateLike
    # Rule parts outside the modelled subset (BYHOUR, BYWEEKNO, ...), kept verbatim
    extra_parts: dict[str, str] = Field(default_factory=dict)
    # (KEY, value) pairs in the order they were parsed; empty when built in code
    source_parts: tuple[tuple[str, str], ...] = ()

    @field_validator("by_month_day")
    @classmethod
    def _month_days_in_range(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        for day in value:
            if day == 0 or not -31 <= day <= 31:
                raise ValueError(f"BYMONTHDAY value out of range: {day}")
        return value

    @field_validator("by_month")
    @classmethod
    def _months_in_range(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        for month in value:
            if not 1 <= month <= 12:
                raise ValueError(f"BYMONTH value out of range: {month}")
        return value

    @field_validator("by_set_position")
    @classmethod
    def _non_zero_set_position(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and (value == 0 or not -366 <= value <= 366):
            raise ValueError(f"BYSETPOS value out of range: {value}")
        return value

    @model_validator(mode="after")
    def _count_or_until(self) -> "RuleModel":
        if self.count is not None and self.until is not None:
            raise ValueError("COUNT and UNTIL are mutually exclusive")
        return self

    @property
    def anchor_date(self) -> date:
        return self.anchor.date() if isinstance(self.anchor, datetime) else self.anchor

    @property
    def has_positional_weekday(self) -> bool:
        return any(spec.position is not None for spec in self.by_weekday)

    def without_parts(self, *keys: str) -> "RuleModel":
        """Copy of the rule with the named extra parts (and BYSETPOS) removed."""
        upper = {k.upper() for k in keys}
        update: dict[str, Any] = {
            "extra_parts": {k: v for k, v in self.extra_parts.items() if k not in upper},
            "source_parts": tuple(p for p in self.source_parts if p[0] not in upper),
        }
        if "BYSETPOS" in upper:
            update["by_set_position"] = None
        return self.model_copy(update=update)


class ExceptionSet(BaseModel):
    """Completed and skipped instance dates of one recurring task.

    Dates are local calendar dates, never timestamps. A date sits in at most
    one of the two sets; dates the rule never produces are ignored.
    """

    model_config = ConfigDict(frozen=True)

    completed: tuple[date, ...] = ()
    skipped: tuple[date, ...] = ()

    @field_validator("completed", "skipped")
    @classmethod
    def _sorted_unique(cls, value: tuple[date, ...]) -> tuple[date, ...]:
        return tuple(sorted(set(value)))

    @model_validator(mode="after")
    def _disjoint(self) -> "ExceptionSet":
        overlap = set(self.completed) & set(self.skipped)
        if overlap:
            raise ValueError(
                "dates cannot be both completed and skipped: "
                + ", ".join(d.isoformat() for d in sorted(overlap))
            )
        return self

    @classmethod
    def from_lists(cls, completed: Any = (), skipped: Any = ()) -> "ExceptionSet":
        """Build from loosely-typed lists, keeping completed dates on overlap."""
        completed_set = set(completed or ())
        skipped_set = set(skipped or ())
        overlap = completed_set & skipped_set
        if overlap:
            logger.warning(
                "Dates marked both completed and skipped; keeping them as completed: %s",
                ", ".join(d.isoformat() for d in sorted(overlap)),
            )
        return cls(completed=tuple(completed_set), skipped=tuple(skipped_set - overlap))

    @property
    def excluded(self) -> tuple[date, ...]:
        """Union of completed and skipped dates, sorted."""
        return tuple(sorted(set(self.completed) | set(self.skipped)))


@dataclass(frozen=True, order=True)
class RecurrenceDate:
    """One expanded occurrence date, flagged when already completed."""

    day: date
    completed: bool = False


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of local calendar dates."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"window end {self.end} is before start {self.start}")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlaps(self, first: date, last: date) -> bool:
        return first <= self.end and last >= self.start

    @classmethod
    def around(cls, day: date, days_before: int, days_after: int) -> "DateWindow":
        return cls(day - timedelta(days=days_before), day + timedelta(days=days_after))


# Cross references


class LiteralReference(BaseModel):
    """Plain identifier or free text."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["literal"] = "literal"
    text: str


class LinkReference(BaseModel):
    """Link to another note/task by path."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["link"] = "link"
    path: str


class UnresolvedReference(BaseModel):
    """Value whose shape could not be interpreted."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unresolved"] = "unresolved"
    raw: str


CrossReference = Union[LiteralReference, LinkReference, UnresolvedReference]


# Feed models


class FeedEvent(BaseModel):
    """An event from an external calendar feed (master, instance or single)."""

    model_config = ConfigDict(frozen=True)

    id: str
    subscription_id: str
    title: str
    start: DateLike
    end: Optional[DateLike] = None
    all_day: bool = False
    rule: Optional[RuleModel] = None
    raw_properties: dict[str, str] = Field(default_factory=dict)
    master_id: Optional[str] = None
    is_instance: bool = False
    references: tuple[CrossReference, ...] = ()


class Subscription(BaseModel):
    """An external calendar subscription and its cached events snapshot.

    Instances are immutable: a refresh produces a new Subscription that
    replaces the previous one as a whole.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    source: str
    color: str = "#3a87ad"
    enabled: bool = True
    refresh_interval_seconds: int = Field(default=900, ge=60)
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    events: tuple[FeedEvent, ...] = ()

    @property
    def has_error(self) -> bool:
        return self.last_error is not None


# Task records


class TimeEntry(BaseModel):
    """Logged time on a task; ``end`` is None while a timer is running."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: Optional[datetime] = None
    description: Optional[str] = None


class TaskRecord(BaseModel):
    """Plain task record as returned by a TaskStore."""

    model_config = ConfigDict(frozen=True)

    path: str
    title: str
    due: Optional[DateLike] = None
    scheduled: Optional[DateLike] = None
    recurrence: Optional[str] = None
    recurrence_anchor: Literal["scheduled", "completion"] = "scheduled"
    complete_instances: tuple[date, ...] = ()
    skipped_instances: tuple[date, ...] = ()
    priority: Optional[str] = None
    status: Optional[str] = None
    time_entries: tuple[TimeEntry, ...] = ()
    time_estimate: Optional[int] = Field(default=None, ge=0)
    date_properties: dict[str, DateLike] = Field(default_factory=dict)
    projects: tuple[CrossReference, ...] = ()

    @property
    def exceptions(self) -> ExceptionSet:
        return ExceptionSet.from_lists(self.complete_instances, self.skipped_instances)


# Synthesized output


class OccurrenceKind(str, Enum):
    """Kind of synthesized occurrence, declared in sort precedence order."""

    DUE = "due"
    SCHEDULED = "scheduled"
    RECURRING_INSTANCE = "recurring_instance"
    TIME_ENTRY = "time_entry"
    PROPERTY_BASED = "property_based"

    @property
    def precedence(self) -> int:
        return _KIND_PRECEDENCE[self]


_KIND_PRECEDENCE = {kind: index for index, kind in enumerate(OccurrenceKind)}


class Occurrence(BaseModel):
    """One displayable calendar occurrence. Never persisted, never mutated."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    kind: OccurrenceKind
    start: DateLike
    end: Optional[DateLike] = None
    all_day: bool = False
    editable: bool = True
    border_color: str
    fill_color: str
    label: str
    completed: bool = False
    instance_date: Optional[date] = None


class VisibilityOptions(BaseModel):
    """Independent toggles for each occurrence kind."""

    model_config = ConfigDict(frozen=True)

    show_due: bool = True
    show_scheduled: bool = True
    show_recurring: bool = True
    show_time_entries: bool = False
    show_feed_events: bool = True
    property_fields: tuple[str, ...] = ()
    project: Optional[CrossReference] = None


class RecurrencePayload(BaseModel):
    """Recurrence fields for a third-party calendar event."""

    model_config = ConfigDict(frozen=True)

    rule_string: str
    exception_dates: tuple[date, ...] = ()
    anchor_date: date
    anchor_time: Optional[time] = None

    @property
    def recurrence(self) -> list[str]:
        """Wire form: the RRULE line followed by one date-only EXDATE per exception."""
        lines = [self.rule_string]
        lines.extend(f"EXDATE:{d.strftime('%Y%m%d')}" for d in self.exception_dates)
        return lines

    @property
    def has_time(self) -> bool:
        return self.anchor_time is not None
