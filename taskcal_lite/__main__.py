"""Command-line entry for taskcal_lite.

Small inspection CLI over the engine:

  taskcal expand "DTSTART:20250113;FREQ=MONTHLY;BYDAY=2MO" --end 2025-06-30
  taskcal feed https://example.com/team.ics
  taskcal export "DTSTART:20250210;FREQ=WEEKLY;BYDAY=MO" --completed 2025-02-17
  taskcal synthesize tasks.yaml --start 2025-02-01 --end 2025-02-28
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import date, timedelta
from typing import Any

import yaml

from . import _init_logging
from .config_loader import Config, load_config
from .event_synthesizer import EventSynthesizer
from .exceptions import CompatibilityError, FeedParseError, RefreshError, RuleValidationError
from .lite_datetime_utils import local_date, parse_date_value
from .lite_fetcher import FeedFetcher
from .lite_logging import configure_logging
from .lite_models import DateWindow, ExceptionSet, VisibilityOptions
from .lite_parser import ExternalFeedExpander
from .lite_rrule_expander import RecurrenceRuleEngine
from .lite_rrule_parser import parse_rule_text
from .outbound_translator import OutboundRecurrenceTranslator
from .subscription_manager import SubscriptionManager
from .task_store import load_tasks_file
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


def _date_arg(value: str) -> date:
    try:
        parsed = parse_date_value(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r}") from e
    if parsed is None:
        raise argparse.ArgumentTypeError("empty date")
    return local_date(parsed)


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the taskcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="taskcal",
        description="taskcal - recurrence expansion and calendar synthesis for recurring tasks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", metavar="PATH", help="YAML/JSON config file (default: ./taskcal.yaml)")
    parser.add_argument("--log-level", metavar="LEVEL", help="Log level (overrides config)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_window(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--start", type=_date_arg, help="Window start (default: today)")
        sub.add_argument("--end", type=_date_arg, help=f"Window end (default: start + {DEFAULT_WINDOW_DAYS} days)")

    def add_exceptions(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--anchor", type=_date_arg, help="Anchor date when the rule has no DTSTART")
        sub.add_argument("--completed", type=_date_arg, nargs="*", default=[], help="Completed instance dates")
        sub.add_argument("--skipped", type=_date_arg, nargs="*", default=[], help="Skipped instance dates")

    expand = subparsers.add_parser("expand", help="Expand a recurrence rule into dates")
    expand.add_argument("rule", help="Rule text, e.g. DTSTART:20250113;FREQ=MONTHLY;BYDAY=2MO")
    add_exceptions(expand)
    add_window(expand)

    feed = subparsers.add_parser("feed", help="Fetch and expand an ICS feed")
    feed.add_argument("source", help="http(s)/webcal URL or local .ics path")
    feed.add_argument("--id", default="cli", help="Subscription id for the parsed events")

    export = subparsers.add_parser("export", help="Translate a rule into a calendar service event body")
    export.add_argument("rule", help="Rule text with DTSTART")
    export.add_argument("--title", default="Recurring task", help="Event summary")
    export.add_argument("--duration", type=int, default=60, help="Duration of timed events in minutes")
    export.add_argument("--timezone", help="IANA zone for timed events")
    add_exceptions(export)

    synthesize = subparsers.add_parser("synthesize", help="Synthesize calendar occurrences from a task file")
    synthesize.add_argument("tasks", help="YAML file with a list of tasks")
    synthesize.add_argument("--time-entries", action="store_true", help="Include closed time entries")
    synthesize.add_argument("--property", action="append", default=[], help="Custom date property to show")
    synthesize.add_argument("--no-feeds", action="store_true", help="Skip configured subscriptions")
    add_window(synthesize)

    return parser


def _window(args: argparse.Namespace) -> DateWindow:
    start = args.start or now_utc().date()
    end = args.end or start + timedelta(days=DEFAULT_WINDOW_DAYS)
    return DateWindow(start, end)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _cmd_expand(args: argparse.Namespace, config: Config) -> int:
    rule = parse_rule_text(args.rule, anchor=args.anchor)
    exceptions = ExceptionSet.from_lists(args.completed, args.skipped)
    engine = RecurrenceRuleEngine(max_periods=config.max_periods)
    for item in engine.expand(rule, exceptions, _window(args)):
        print(f"{item.day.isoformat()}{'  (completed)' if item.completed else ''}")
    return 0


def _cmd_feed(args: argparse.Namespace, config: Config) -> int:
    async def fetch() -> str:
        async with FeedFetcher() as fetcher:
            return await fetcher.fetch(args.source)

    text = asyncio.run(fetch())
    expander = ExternalFeedExpander(
        engine=RecurrenceRuleEngine(max_periods=config.max_periods),
        expansion_days=config.feed_expansion_days,
    )
    for event in expander.parse(text, args.id):
        end = f" -> {event.end}" if event.end is not None else ""
        print(f"{event.start}{end}  {event.title}  [{event.id}]")
    return 0


def _cmd_export(args: argparse.Namespace, config: Config) -> int:
    rule = parse_rule_text(args.rule, anchor=args.anchor)
    translator = OutboundRecurrenceTranslator()
    result = translator.translate(rule, ExceptionSet.from_lists(args.completed, args.skipped))
    if isinstance(result, CompatibilityError):
        print(f"Not exportable: {result}", file=sys.stderr)
        return 2
    _print_json(
        translator.build_event_body(
            result,
            title=args.title,
            duration_minutes=args.duration,
            timezone=args.timezone or config.timezone,
        )
    )
    return 0


def _cmd_synthesize(args: argparse.Namespace, config: Config) -> int:
    store = load_tasks_file(args.tasks)
    manager = SubscriptionManager.from_config(config)

    async def refresh() -> None:
        try:
            await manager.refresh_all()
        finally:
            await manager.stop()

    if config.subscriptions and not args.no_feeds:
        asyncio.run(refresh())
        for subscription in manager.subscriptions():
            if subscription.has_error:
                logger.warning("Subscription %s: %s", subscription.name, subscription.last_error)

    visibility = VisibilityOptions(
        show_time_entries=args.time_entries,
        show_feed_events=not args.no_feeds,
        property_fields=tuple(args.property),
    )
    occurrences = EventSynthesizer.from_config(config).synthesize(
        store.get_all_tasks(),
        manager.all_events(),
        _window(args),
        visibility,
        subscription_colors=manager.colors(),
    )
    _print_json([o.model_dump(mode="json") for o in occurrences])
    return 0


COMMANDS = {
    "expand": _cmd_expand,
    "feed": _cmd_feed,
    "export": _cmd_export,
    "synthesize": _cmd_synthesize,
}


def main(argv: list[str] | None = None) -> int:
    """Run the taskcal CLI.

    Returns:
        Process exit code (0 success, 1 input/fetch error, 2 not exportable)
    """
    parser = _create_parser()
    args = parser.parse_args(argv)

    _init_logging(args.log_level or os.environ.get("TASKCAL_LOG_LEVEL"))
    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Failed to load config: %s", e)  # noqa: TRY400
        return 1
    configure_logging(args.log_level or config.log_level)

    try:
        return COMMANDS[args.command](args, config)
    except (RuleValidationError, FeedParseError, RefreshError) as e:
        logger.error("%s", e)  # noqa: TRY400
        return 1
    except (OSError, ValueError) as e:
        logger.error("Failed to read input: %s", e)  # noqa: TRY400
        return 1


if __name__ == "__main__":
    sys.exit(main())
