"""Timezone detection and conversion utilities for taskcal_lite."""

from __future__ import annotations

import datetime
import logging
import os
import time
import zoneinfo
from typing import ClassVar, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"


class TimezoneDetector:
    """Detects the local timezone using a few fallback strategies."""

    # Timezone abbreviation to IANA identifier mapping
    TZ_ABBREV_MAP: ClassVar[dict[str, str]] = {
        "PST": "America/Los_Angeles",
        "PDT": "America/Los_Angeles",
        "EST": "America/New_York",
        "EDT": "America/New_York",
        "CST": "America/Chicago",
        "CDT": "America/Chicago",
        "MST": "America/Denver",
        "MDT": "America/Denver",
        "GMT": "Europe/London",
        "BST": "Europe/London",
        "CET": "Europe/Paris",
        "CEST": "Europe/Paris",
        "UTC": "UTC",
    }

    # Windows timezone names used by Outlook/Exchange feeds
    WINDOWS_TZ_MAP: ClassVar[dict[str, str]] = {
        "Pacific Standard Time": "America/Los_Angeles",
        "Mountain Standard Time": "America/Denver",
        "Central Standard Time": "America/Chicago",
        "Eastern Standard Time": "America/New_York",
        "Alaskan Standard Time": "America/Anchorage",
        "Hawaiian Standard Time": "Pacific/Honolulu",
        "Arizona Standard Time": "America/Phoenix",
        "GMT Standard Time": "Europe/London",
        "Central European Standard Time": "Europe/Paris",
        "Romance Standard Time": "Europe/Paris",
        "W. Europe Standard Time": "Europe/Berlin",
        "China Standard Time": "Asia/Shanghai",
        "Tokyo Standard Time": "Asia/Tokyo",
        "India Standard Time": "Asia/Kolkata",
        "AUS Eastern Standard Time": "Australia/Sydney",
        "UTC": "UTC",
    }

    def get_local_timezone(self) -> str:
        """Return the local timezone as an IANA identifier.

        Honours the ``TZ`` environment variable first, then the system
        abbreviation, and falls back to UTC.
        """
        env_tz = os.environ.get("TZ")
        if env_tz and self.is_valid(env_tz):
            return env_tz

        local_name = time.tzname[time.daylight] if time.daylight else time.tzname[0]
        iana = self.TZ_ABBREV_MAP.get(local_name)
        if iana and self.is_valid(iana):
            return iana

        logger.debug("Could not map local timezone %r; using %s", local_name, DEFAULT_TIMEZONE)
        return DEFAULT_TIMEZONE

    @staticmethod
    def is_valid(name: str) -> bool:
        try:
            zoneinfo.ZoneInfo(name)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError):
            return False
        return True


_detector = TimezoneDetector()


def windows_tz_to_iana(name: str) -> Optional[str]:
    """Map a Windows timezone name to its IANA identifier, if known."""
    return TimezoneDetector.WINDOWS_TZ_MAP.get(name.strip())


def resolve_timezone(name: Optional[str]) -> zoneinfo.ZoneInfo:
    """Resolve an IANA or Windows timezone name into a ZoneInfo.

    ``None`` or an unknown name resolves to the detected local timezone.
    """
    if name:
        candidate = windows_tz_to_iana(name) or name
        try:
            return zoneinfo.ZoneInfo(candidate)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; falling back to local timezone", name)
    return zoneinfo.ZoneInfo(_detector.get_local_timezone())


def now_utc() -> datetime.datetime:
    """Return the current UTC time as an aware datetime.

    Can be overridden for tests via the TASKCAL_TEST_TIME environment variable
    (any string python-dateutil can parse; naive values are taken as UTC).
    """
    test_time = os.environ.get("TASKCAL_TEST_TIME")
    if test_time:
        try:
            parsed = date_parser.parse(test_time)
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse TASKCAL_TEST_TIME=%r: %s", test_time, e)
        else:
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=datetime.timezone.utc)
            return parsed.astimezone(datetime.timezone.utc)
    return datetime.datetime.now(datetime.timezone.utc)
