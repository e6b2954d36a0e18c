"""Recurrence rule text parsing and serialization for taskcal_lite.

Task files store rules with an embedded anchor, e.g.::

    DTSTART:20250113;FREQ=MONTHLY;BYDAY=2MO
    DTSTART;TZID=Europe/Berlin:20250113T090000;FREQ=WEEKLY;BYDAY=MO,WE

Feeds hand over the bare RRULE value (``FREQ=MONTHLY;BYDAY=2MO``) together
with the event's DTSTART.
"""

import logging
import re
from datetime import UTC, date, datetime
from typing import Optional, Union

from pydantic import ValidationError

from .exceptions import RuleValidationError
from .lite_datetime_utils import TimezoneParser
from .lite_models import WEEKDAY_CODES, Frequency, RuleModel, WeekdaySpec

logger = logging.getLogger(__name__)

_BYDAY_TOKEN = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")
_DTSTART_LINE = re.compile(r"^DTSTART(?:;TZID=([^:]+))?:(.+)$", re.IGNORECASE)

# Parts mapped onto RuleModel fields; everything else is kept verbatim
MODELLED_PARTS = frozenset(
    {"FREQ", "INTERVAL", "COUNT", "UNTIL", "BYDAY", "BYMONTHDAY", "BYMONTH", "BYSETPOS", "WKST"}
)


def _split_rule_text(text: str) -> list[str]:
    """Split rule text into ``KEY=value`` / ``DTSTART...`` segments."""
    segments: list[str] = []
    for line in re.split(r"[\r\n]+", text.strip()):
        line = line.strip()
        if not line:
            continue
        if line.upper().startswith("RRULE:"):
            line = line[len("RRULE:"):]
        # A DTSTART segment ends at the first ';' that follows its value
        match = re.match(r"^(DTSTART(?:;TZID=[^:]+)?:[0-9TZz]+);?(.*)$", line, re.IGNORECASE)
        if match:
            segments.append(match.group(1))
            line = match.group(2)
        segments.extend(part.strip() for part in line.split(";") if part.strip())
    return segments


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise RuleValidationError(f"{key} must be an integer, got {value!r}") from e


def _parse_int_list(key: str, value: str) -> tuple[int, ...]:
    return tuple(_parse_int(key, item.strip()) for item in value.split(",") if item.strip())


def parse_weekday_token(token: str) -> WeekdaySpec:
    """Parse a BYDAY token such as ``MO``, ``2MO``, ``-1FR`` or ``+3TH``.

    Raises:
        RuleValidationError: If the token is malformed
    """
    match = _BYDAY_TOKEN.match(token.strip().upper())
    if not match:
        raise RuleValidationError(f"Invalid BYDAY entry: {token!r}")
    position_text, code = match.groups()
    position = int(position_text) if position_text else None
    try:
        return WeekdaySpec(weekday=WEEKDAY_CODES.index(code), position=position)
    except ValidationError as e:
        raise RuleValidationError(f"Invalid BYDAY entry: {token!r}") from e


def _parse_dtstart(segment: str) -> Union[date, datetime]:
    match = _DTSTART_LINE.match(segment)
    if not match:
        raise RuleValidationError(f"Malformed DTSTART: {segment!r}")
    tzid, value = match.groups()
    parser = TimezoneParser()
    try:
        if tzid:
            return parser.parse_with_tzid(f"TZID={tzid}:{value}")
        return parser.parse(value)
    except ValueError as e:
        raise RuleValidationError(f"Malformed DTSTART: {segment!r}") from e


def extract_anchor(text: str) -> Optional[Union[date, datetime]]:
    """Return the embedded DTSTART of ``text`` even when the rest of the rule is unreadable."""
    for segment in _split_rule_text(text or ""):
        if segment.upper().startswith("DTSTART"):
            try:
                return _parse_dtstart(segment)
            except RuleValidationError:
                return None
    return None


def parse_rule_text(text: str, anchor: Optional[Union[date, datetime]] = None) -> RuleModel:
    """Parse recurrence rule text into a RuleModel.

    Args:
        text: Rule text, optionally with an embedded DTSTART and/or RRULE prefix
        anchor: Anchor to use when the text carries no DTSTART

    Returns:
        Parsed RuleModel

    Raises:
        RuleValidationError: If the text is empty, malformed or inconsistent
    """
    if not text or not text.strip():
        raise RuleValidationError("Empty recurrence rule")

    fields: dict[str, object] = {}
    extra_parts: dict[str, str] = {}
    source_parts: list[tuple[str, str]] = []
    dtstart: Optional[Union[date, datetime]] = None
    parser = TimezoneParser()

    for segment in _split_rule_text(text):
        if segment.upper().startswith("DTSTART"):
            dtstart = _parse_dtstart(segment)
            continue
        if "=" not in segment:
            raise RuleValidationError(f"Malformed rule part: {segment!r}")

        key, value = segment.split("=", 1)
        key = key.strip().upper()
        value = value.strip()
        if not value:
            raise RuleValidationError(f"Empty value for {key}")
        source_parts.append((key, value))

        if key == "FREQ":
            try:
                fields["frequency"] = Frequency(value.upper())
            except ValueError as e:
                raise RuleValidationError(f"Unknown FREQ value: {value!r}") from e
        elif key == "INTERVAL":
            fields["interval"] = _parse_int(key, value)
        elif key == "COUNT":
            fields["count"] = _parse_int(key, value)
        elif key == "UNTIL":
            try:
                fields["until"] = parser.parse(value)
            except ValueError as e:
                raise RuleValidationError(f"Invalid UNTIL value: {value!r}") from e
        elif key == "BYDAY":
            fields["by_weekday"] = tuple(
                parse_weekday_token(token) for token in value.split(",") if token.strip()
            )
        elif key == "BYMONTHDAY":
            fields["by_month_day"] = _parse_int_list(key, value)
        elif key == "BYMONTH":
            fields["by_month"] = _parse_int_list(key, value)
        elif key == "BYSETPOS":
            positions = _parse_int_list(key, value)
            if len(positions) == 1:
                fields["by_set_position"] = positions[0]
            else:
                # Several set positions are outside the modelled subset
                extra_parts[key] = value
        elif key == "WKST":
            code = value.upper()
            if code not in WEEKDAY_CODES:
                raise RuleValidationError(f"Invalid WKST value: {value!r}")
            fields["week_start"] = WEEKDAY_CODES.index(code)
        else:
            extra_parts[key] = value

    if "frequency" not in fields:
        raise RuleValidationError("Recurrence rule missing FREQ")

    resolved_anchor = dtstart if dtstart is not None else anchor
    if resolved_anchor is None:
        raise RuleValidationError("Recurrence rule has no anchor date")

    try:
        return RuleModel(
            anchor=resolved_anchor,
            extra_parts=extra_parts,
            source_parts=tuple(source_parts),
            **fields,  # type: ignore[arg-type]
        )
    except ValidationError as e:
        raise RuleValidationError(f"Invalid recurrence rule {text!r}: {e.errors()[0]['msg']}") from e


def _format_until(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")
        return value.strftime("%Y%m%dT%H%M%S")
    return value.strftime("%Y%m%d")


def _canonical_parts(rule: RuleModel) -> list[tuple[str, str]]:
    parts: list[tuple[str, str]] = [("FREQ", rule.frequency.value)]
    if rule.interval != 1:
        parts.append(("INTERVAL", str(rule.interval)))
    if rule.count is not None:
        parts.append(("COUNT", str(rule.count)))
    if rule.until is not None:
        parts.append(("UNTIL", _format_until(rule.until)))
    if rule.by_month:
        parts.append(("BYMONTH", ",".join(str(m) for m in rule.by_month)))
    if rule.by_month_day:
        parts.append(("BYMONTHDAY", ",".join(str(d) for d in rule.by_month_day)))
    if rule.by_weekday:
        parts.append(("BYDAY", ",".join(str(spec) for spec in rule.by_weekday)))
    if rule.by_set_position is not None:
        parts.append(("BYSETPOS", str(rule.by_set_position)))
    if rule.week_start != 0:
        parts.append(("WKST", WEEKDAY_CODES[rule.week_start]))
    parts.extend(rule.extra_parts.items())
    return parts


def format_anchor(anchor: Union[date, datetime]) -> str:
    """Render an anchor as a DTSTART segment."""
    if isinstance(anchor, datetime):
        if anchor.tzinfo is None:
            return f"DTSTART:{anchor.strftime('%Y%m%dT%H%M%S')}"
        key = getattr(anchor.tzinfo, "key", None)
        if key and key != "UTC":
            return f"DTSTART;TZID={key}:{anchor.strftime('%Y%m%dT%H%M%S')}"
        return f"DTSTART:{anchor.astimezone(UTC).strftime('%Y%m%dT%H%M%SZ')}"
    return f"DTSTART:{anchor.strftime('%Y%m%d')}"


def rule_to_string(rule: RuleModel, include_anchor: bool = False) -> str:
    """Serialize a RuleModel back to rule text.

    Parsed rules are re-emitted part for part as they were read; rules built in
    code get a canonical part order. The anchor is omitted unless requested.
    """
    parts = list(rule.source_parts) if rule.source_parts else _canonical_parts(rule)
    body = ";".join(f"{key}={value}" for key, value in parts)
    if include_anchor:
        return f"{format_anchor(rule.anchor)};{body}"
    return body
