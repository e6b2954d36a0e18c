"""Custom exception hierarchy for taskcal_lite.

Each error kind is caught at the boundary of the component that produces it and
converted into a fallback value or a typed result, so a single bad rule, feed
block or subscription never aborts a batch covering many tasks or events.
"""

from typing import Optional


class TaskCalError(Exception):
    """Base exception for all taskcal_lite errors."""


class RuleValidationError(TaskCalError):
    """Recurrence rule is malformed or uses an unsupported combination.

    Raised when:
    - FREQ is missing, unknown or sub-daily
    - A rule part has a malformed or out-of-range value
    - COUNT and UNTIL are both present
    - Expansion exceeds the period ceiling

    Recoverable: callers fall back to the non-recurring base occurrence.
    """


class FeedParseError(TaskCalError):
    """Feed text or a single event block could not be parsed.

    Recoverable: a broken block is skipped, a broken feed keeps the previous
    cached events of its subscription.
    """


class CompatibilityError(TaskCalError):
    """Rule uses a feature the outbound calendar service cannot express.

    Surfaced to the caller instead of silently degrading the exported schedule.
    """

    def __init__(self, message: str, unsupported_part: Optional[str] = None):
        super().__init__(message)
        self.unsupported_part = unsupported_part


class RefreshError(TaskCalError):
    """Fetching a subscription feed failed (network, HTTP status or file read)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
