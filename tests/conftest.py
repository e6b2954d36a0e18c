"""Shared fixtures for taskcal_lite tests."""

from collections.abc import Generator
from datetime import date
from typing import Any

import pytest

from taskcal_lite.lite_models import DateWindow


def pytest_configure(config: Any) -> None:
    """Register test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests spanning several components")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear taskcal environment overrides so tests never see the host's values.

    TASKCAL_TEST_TIME freezes "now" for feed expansion windows; tests that need
    it set it explicitly with monkeypatch.
    """
    for name in ("TASKCAL_TEST_TIME", "TASKCAL_DEBUG", "TASKCAL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def frozen_now(monkeypatch: Any) -> str:
    """Freeze now_utc() at 2025-03-01 12:00 UTC."""
    value = "2025-03-01T12:00:00Z"
    monkeypatch.setenv("TASKCAL_TEST_TIME", value)
    return value


@pytest.fixture
def year_2025() -> DateWindow:
    return DateWindow(date(2025, 1, 1), date(2025, 12, 31))


@pytest.fixture
def sample_ics_simple() -> str:
    """
    Return a simple ICS calendar string with a single timed event.

    Returns:
        ICS string with one event, "Team Meeting" on 2025-03-03 10:00-11:00 UTC
    """
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//taskcal test//EN
BEGIN:VEVENT
UID:single-001@taskcal.test
DTSTART:20250303T100000Z
DTEND:20250303T110000Z
SUMMARY:Team Meeting
LOCATION:Conference Room A
DESCRIPTION:Weekly team sync
DTSTAMP:20250301T090000Z
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def sample_ics_recurring() -> str:
    """
    Return an ICS string with a weekly recurring event, one EXDATE and one override.

    - Master: "Weekly Review" Mondays 09:00-09:30 UTC from 2025-03-03, COUNT=4
    - EXDATE removes 2025-03-10
    - RECURRENCE-ID override moves 2025-03-17 to 14:00
    """
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//taskcal test//EN
BEGIN:VEVENT
UID:weekly-001@taskcal.test
DTSTART:20250303T090000Z
DTEND:20250303T093000Z
SUMMARY:Weekly Review
RRULE:FREQ=WEEKLY;COUNT=4;BYDAY=MO
EXDATE:20250310T090000Z
DTSTAMP:20250301T090000Z
END:VEVENT
BEGIN:VEVENT
UID:weekly-001@taskcal.test
RECURRENCE-ID:20250317T090000Z
DTSTART:20250317T140000Z
DTEND:20250317T143000Z
SUMMARY:Weekly Review (moved)
DTSTAMP:20250301T090000Z
END:VEVENT
END:VCALENDAR
"""
