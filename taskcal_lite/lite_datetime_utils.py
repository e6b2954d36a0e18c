"""Date and datetime helpers shared by the rule parser, feed parser and synthesizer.

Values that flow through taskcal_lite are either ``date`` (all-day / date-only)
or ``datetime`` (timed, aware or naive). These helpers convert between them
without losing the distinction.
"""

import logging
from datetime import UTC, date, datetime, time, tzinfo
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .timezone_utils import windows_tz_to_iana

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

_COMPACT_FORMATS = ("%Y%m%dT%H%M%S", "%Y%m%dT%H%M")
_ISO_DATE_FORMATS = ("%Y-%m-%d", "%Y%m%d")


def ensure_timezone_aware(dt: datetime, default_tz: Optional[tzinfo] = None) -> datetime:
    """Return ``dt`` with a timezone, attaching ``default_tz`` (UTC if None) to naive values."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=default_tz or UTC)
    return dt


def is_all_day(value: DateLike) -> bool:
    """A bare ``date`` (not a ``datetime``) marks an all-day value."""
    return not isinstance(value, datetime)


def local_date(value: DateLike, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of ``value`` as seen in ``tz``.

    Aware datetimes are converted into ``tz`` when given; naive datetimes and
    dates are taken at face value.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None and tz is not None:
            return value.astimezone(tz).date()
        return value.date()
    return value


def to_instant(value: DateLike, tz: tzinfo) -> datetime:
    """Aware datetime for ``value``; dates map to local midnight in ``tz``."""
    if isinstance(value, datetime):
        return ensure_timezone_aware(value, tz)
    return datetime.combine(value, time.min, tzinfo=tz)


def combine_with_anchor_time(day: date, anchor: DateLike) -> DateLike:
    """Place ``day`` on the wall-clock time (and zone) of ``anchor``.

    Date-only anchors yield the bare date.
    """
    if isinstance(anchor, datetime):
        return datetime.combine(day, anchor.time(), tzinfo=anchor.tzinfo)
    return day


def format_compact_date(day: date) -> str:
    """Render ``day`` as ``YYYYMMDD``."""
    return day.strftime("%Y%m%d")


def zone_for_tzid(tzid: str) -> tzinfo:
    """Resolve an iCalendar TZID (IANA, Windows or UTC alias) into a tzinfo."""
    name = tzid.strip().strip('"')
    if name.upper() in ("UTC", "Z", "GMT"):
        return UTC
    iana = windows_tz_to_iana(name) or name
    return ZoneInfo(iana)


class TimezoneParser:
    """Parse iCalendar-style date/datetime strings with timezone handling.

    Handles:
    - ``TZID=Pacific Standard Time:20251031T090000`` (Windows and IANA names)
    - ``20250623T083000Z`` and ``20250623T083000``
    - ``20250623`` (date-only)
    """

    def parse_with_tzid(self, value: str) -> datetime:
        """Parse ``TZID=<zone>:<datetime>`` into an aware datetime in that zone.

        Raises:
            ValueError: If the value or its zone cannot be parsed
        """
        if not value.upper().startswith("TZID="):
            raise ValueError(f"Expected TZID prefix, got: {value}")

        tzid_part, _, dt_part = value[5:].rpartition(":")
        if not tzid_part or not dt_part:
            raise ValueError(f"Malformed TZID value: {value}")

        naive = self._parse_compact_datetime(dt_part.rstrip("Zz"))
        if dt_part.upper().endswith("Z"):
            return naive.replace(tzinfo=UTC)
        try:
            zone = zone_for_tzid(tzid_part)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown TZID {tzid_part!r} in {value}") from e
        return naive.replace(tzinfo=zone)

    def parse(self, value: str) -> DateLike:
        """Parse an iCalendar date or datetime string.

        Returns:
            ``date`` for date-only input, ``datetime`` otherwise (aware when a
            ``Z`` suffix or TZID is present)

        Raises:
            ValueError: If the format is not recognised
        """
        text = value.strip()
        if not text:
            raise ValueError("Empty date value")
        if text.upper().startswith("TZID="):
            return self.parse_with_tzid(text)

        if "T" in text.upper():
            has_utc_marker = text.upper().endswith("Z")
            naive = self._parse_compact_datetime(text.rstrip("Zz"))
            return naive.replace(tzinfo=UTC) if has_utc_marker else naive

        for fmt in _ISO_DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Unable to parse date value: {value}")

    @staticmethod
    def _parse_compact_datetime(text: str) -> datetime:
        for fmt in _COMPACT_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        # ISO style (2025-06-23T08:30:00) as written by hand-edited task files
        try:
            return datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Unable to parse datetime: {text}") from e


def parse_date_value(value: Any) -> Optional[DateLike]:
    """Coerce a task-store field into ``date`` / ``datetime``.

    Accepts date and datetime objects, ISO strings (``2025-02-10``,
    ``2025-02-10T09:00``, ``2025-02-10T09:00:00Z``) and compact iCalendar
    strings. Empty values return None.

    Raises:
        ValueError: If a non-empty value cannot be interpreted
    """
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value

    text = str(value).strip()
    if not text:
        return None
    if len(text) == 10 and text[4] == "-":
        return date.fromisoformat(text)
    if "-" in text[:8]:
        iso = text[:-1] + "+00:00" if text.endswith("Z") else text
        return datetime.fromisoformat(iso)
    return TimezoneParser().parse(text)
