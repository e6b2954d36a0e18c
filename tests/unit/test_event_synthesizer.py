"""Unit tests for taskcal_lite.event_synthesizer.EventSynthesizer."""

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from taskcal_lite.colors import ColorResolver
from taskcal_lite.config_loader import Config
from taskcal_lite.event_synthesizer import EventSynthesizer
from taskcal_lite.lite_models import (
    DateWindow,
    FeedEvent,
    LinkReference,
    LiteralReference,
    OccurrenceKind,
    TaskRecord,
    TimeEntry,
    VisibilityOptions,
)

pytestmark = pytest.mark.unit

FEBRUARY = DateWindow(date(2025, 2, 1), date(2025, 2, 28))


@pytest.fixture
def synthesizer() -> EventSynthesizer:
    return EventSynthesizer(timezone=ZoneInfo("UTC"))


@pytest.fixture
def water_plants() -> TaskRecord:
    return TaskRecord(
        path="tasks/water-plants.md",
        title="Water plants",
        due=date(2025, 2, 12),
        scheduled=date(2025, 2, 10),
        recurrence="FREQ=WEEKLY;BYDAY=MO",
        complete_instances=(date(2025, 2, 17),),
        priority="high",
    )


class TestTaskOccurrences:
    def test_due_scheduled_and_weekly_instances(self, synthesizer: EventSynthesizer, water_plants: TaskRecord) -> None:
        occurrences = synthesizer.synthesize([water_plants], [], FEBRUARY)

        assert [(o.kind, o.start) for o in occurrences] == [
            (OccurrenceKind.SCHEDULED, date(2025, 2, 10)),
            (OccurrenceKind.RECURRING_INSTANCE, date(2025, 2, 10)),
            (OccurrenceKind.DUE, date(2025, 2, 12)),
            (OccurrenceKind.RECURRING_INSTANCE, date(2025, 2, 17)),
            (OccurrenceKind.RECURRING_INSTANCE, date(2025, 2, 24)),
        ]
        due = occurrences[2]
        assert due.label == "Due: Water plants"
        assert due.all_day is True
        completed = [o.instance_date for o in occurrences if o.completed]
        assert completed == [date(2025, 2, 17)]

    def test_priority_colors(self, synthesizer: EventSynthesizer, water_plants: TaskRecord) -> None:
        occurrence = synthesizer.synthesize([water_plants], [], FEBRUARY)[0]

        assert occurrence.border_color == "#ff6b6b"
        assert occurrence.fill_color == "rgba(255, 107, 107, 0.15)"
        assert occurrence.editable is True

    def test_unknown_priority_uses_default_color(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(path="t", title="t", due=date(2025, 2, 3), priority="urgent-ish")

        assert synthesizer.synthesize([task], [], FEBRUARY)[0].border_color == "#3a87ad"

    def test_status_colors(self) -> None:
        synthesizer = EventSynthesizer(color_by="status", timezone=ZoneInfo("UTC"))
        task = TaskRecord(path="t", title="t", due=date(2025, 2, 3), status="done")

        assert synthesizer.synthesize([task], [], FEBRUARY)[0].border_color == "#00aa00"

    def test_timed_recurrence_uses_anchor_time_and_estimate(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(
            path="tasks/standup.md",
            title="Standup",
            recurrence="DTSTART:20250210T090000Z;FREQ=DAILY;COUNT=3",
            time_estimate=30,
        )

        occurrences = synthesizer.synthesize([task], [], FEBRUARY)

        assert [o.start for o in occurrences] == [
            datetime(2025, 2, 10, 9, 0, tzinfo=UTC),
            datetime(2025, 2, 11, 9, 0, tzinfo=UTC),
            datetime(2025, 2, 12, 9, 0, tzinfo=UTC),
        ]
        assert occurrences[0].end == datetime(2025, 2, 10, 9, 30, tzinfo=UTC)
        assert occurrences[0].all_day is False

    def test_skipped_instances_not_shown(self, synthesizer: EventSynthesizer, water_plants: TaskRecord) -> None:
        task = water_plants.model_copy(update={"skipped_instances": (date(2025, 2, 24),)})

        starts = [o.start for o in synthesizer.synthesize([task], [], FEBRUARY) if o.kind is OccurrenceKind.RECURRING_INSTANCE]

        assert starts == [date(2025, 2, 10), date(2025, 2, 17)]

    def test_unparseable_recurrence_keeps_other_kinds(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(path="t", title="t", due=date(2025, 2, 3), recurrence="EVERY OTHER TUESDAY")

        assert [(o.kind, o.start) for o in synthesizer.synthesize([task], [], FEBRUARY)] == [
            (OccurrenceKind.DUE, date(2025, 2, 3)),
            (OccurrenceKind.RECURRING_INSTANCE, date(2025, 2, 3)),
        ]

    def test_unparseable_recurrence_without_dates_shows_embedded_anchor(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(path="t.md", title="T", recurrence="DTSTART:20250210;FREQ=FORTNIGHTLY")

        occurrences = synthesizer.synthesize([task], [], FEBRUARY)

        assert [(o.kind, o.start, o.completed) for o in occurrences] == [
            (OccurrenceKind.RECURRING_INSTANCE, date(2025, 2, 10), False),
        ]

    def test_unparseable_recurrence_respects_exceptions(self, synthesizer: EventSynthesizer) -> None:
        completed = TaskRecord(
            path="t.md",
            title="T",
            recurrence="DTSTART:20250210T090000Z;FREQ=FORTNIGHTLY",
            complete_instances=(date(2025, 2, 10),),
        )
        skipped = completed.model_copy(update={"complete_instances": (), "skipped_instances": (date(2025, 2, 10),)})

        shown = synthesizer.synthesize([completed], [], FEBRUARY)

        assert [(o.start, o.completed) for o in shown] == [(datetime(2025, 2, 10, 9, 0, tzinfo=UTC), True)]
        assert synthesizer.synthesize([skipped], [], FEBRUARY) == []

    def test_unparseable_recurrence_without_any_anchor_is_dropped(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(path="t", title="t", recurrence="FREQ=FORTNIGHTLY")

        assert synthesizer.synthesize([task], [], FEBRUARY) == []

    def test_unsupported_recurrence_shows_anchor_once(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(path="t", title="t", scheduled=date(2025, 2, 5), recurrence="FREQ=HOURLY")
        visibility = VisibilityOptions(show_scheduled=False)

        occurrences = synthesizer.synthesize([task], [], FEBRUARY, visibility)

        assert [(o.kind, o.start) for o in occurrences] == [
            (OccurrenceKind.RECURRING_INSTANCE, date(2025, 2, 5)),
        ]

    def test_outside_window_excluded(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(path="t", title="t", due=date(2025, 3, 3), scheduled=date(2025, 1, 31))

        assert synthesizer.synthesize([task], [], FEBRUARY) == []


class TestVisibility:
    def test_kind_toggles(self, synthesizer: EventSynthesizer, water_plants: TaskRecord) -> None:
        visibility = VisibilityOptions(show_due=False, show_recurring=False)

        kinds = {o.kind for o in synthesizer.synthesize([water_plants], [], FEBRUARY, visibility)}

        assert kinds == {OccurrenceKind.SCHEDULED}

    def test_time_entries_only_closed(self, synthesizer: EventSynthesizer) -> None:
        start = datetime(2025, 2, 4, 9, 0, tzinfo=UTC)
        task = TaskRecord(
            path="t",
            title="Report",
            time_entries=(
                TimeEntry(start=start, end=start + timedelta(hours=1), description="Draft"),
                TimeEntry(start=start + timedelta(days=1)),
            ),
        )

        hidden = synthesizer.synthesize([task], [], FEBRUARY)
        shown = synthesizer.synthesize([task], [], FEBRUARY, VisibilityOptions(show_time_entries=True))

        assert hidden == []
        assert [(o.kind, o.label, o.end) for o in shown] == [
            (OccurrenceKind.TIME_ENTRY, "Draft", start + timedelta(hours=1)),
        ]

    def test_property_fields(self, synthesizer: EventSynthesizer) -> None:
        task = TaskRecord(path="t", title="Essay", date_properties={"review": date(2025, 2, 20)})

        occurrences = synthesizer.synthesize([task], [], FEBRUARY, VisibilityOptions(property_fields=("review", "missing")))

        assert [(o.kind, o.label) for o in occurrences] == [(OccurrenceKind.PROPERTY_BASED, "review: Essay")]

    def test_project_filter(self, synthesizer: EventSynthesizer) -> None:
        home = TaskRecord(path="home", title="Home", due=date(2025, 2, 3), projects=(LinkReference(path="Projects/House"),))
        work = TaskRecord(path="work", title="Work", due=date(2025, 2, 3))

        occurrences = synthesizer.synthesize(
            [home, work], [], FEBRUARY, VisibilityOptions(project=LiteralReference(text="house"))
        )

        assert [o.source_id for o in occurrences] == ["home"]


class TestFeedOccurrences:
    @pytest.fixture
    def standup(self) -> FeedEvent:
        start = datetime(2025, 2, 11, 9, 0, tzinfo=UTC)
        return FeedEvent(id="e1", subscription_id="team", title="Standup", start=start, end=start + timedelta(minutes=15))

    def test_feed_events_read_only_with_subscription_color(self, synthesizer: EventSynthesizer, standup: FeedEvent) -> None:
        occurrences = synthesizer.synthesize([], [standup], FEBRUARY, subscription_colors={"team": "#0000ff"})

        assert len(occurrences) == 1
        occurrence = occurrences[0]
        assert occurrence.kind is OccurrenceKind.PROPERTY_BASED
        assert occurrence.editable is False
        assert occurrence.border_color == "#0000ff"
        assert occurrence.fill_color == "rgba(0, 0, 255, 0.15)"
        assert occurrence.label == "Standup"

    def test_feed_events_hidden(self, synthesizer: EventSynthesizer, standup: FeedEvent) -> None:
        assert synthesizer.synthesize([], [standup], FEBRUARY, VisibilityOptions(show_feed_events=False)) == []

    def test_multi_day_event_overlapping_window_start(self, synthesizer: EventSynthesizer) -> None:
        event = FeedEvent(id="trip", subscription_id="team", title="Trip", start=date(2025, 1, 30), end=date(2025, 2, 2), all_day=True)

        assert [o.source_id for o in synthesizer.synthesize([], [event], FEBRUARY)] == ["trip"]


def test_ordering_ties_broken_by_source_id(synthesizer: EventSynthesizer) -> None:
    tasks = [
        TaskRecord(path="b", title="B", due=date(2025, 2, 3)),
        TaskRecord(path="a", title="A", due=date(2025, 2, 3)),
        TaskRecord(path="c", title="C", scheduled=date(2025, 2, 3)),
    ]

    occurrences = synthesizer.synthesize(tasks, [], FEBRUARY)

    assert [(o.kind, o.source_id) for o in occurrences] == [
        (OccurrenceKind.DUE, "a"),
        (OccurrenceKind.DUE, "b"),
        (OccurrenceKind.SCHEDULED, "c"),
    ]


def test_from_config() -> None:
    config = Config.from_dict(
        {"priority_colors": {"high": "var(--red)"}, "palette": {"--red": "#ee0000"}, "fill_opacity": 0.3, "timezone": "UTC"}
    )
    task = TaskRecord(path="t", title="t", due=date(2025, 2, 3), priority="High")

    occurrence = EventSynthesizer.from_config(config).synthesize([task], [], FEBRUARY)[0]

    assert occurrence.border_color == "#ee0000"
    assert occurrence.fill_color == "rgba(238, 0, 0, 0.3)"


def test_custom_color_resolver() -> None:
    synthesizer = EventSynthesizer(colors=ColorResolver(default_color="#111111"), timezone=ZoneInfo("UTC"))
    task = TaskRecord(path="t", title="t", due=date(2025, 2, 3))

    assert synthesizer.synthesize([task], [], FEBRUARY)[0].border_color == "#111111"
