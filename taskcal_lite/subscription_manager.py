"""Calendar subscription refresh and snapshot management - taskcal_lite.

Each subscription owns an immutable snapshot (the frozen Subscription with its
event tuple). Refreshes are serialized per subscription; a successful refresh
swaps the whole Subscription object in one assignment, a failed one only
records ``last_error`` and keeps the previous events.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any, Optional

from .config_loader import Config
from .exceptions import FeedParseError, RefreshError
from .lite_fetcher import FeedFetcher
from .lite_models import FeedEvent, Subscription
from .lite_parser import ExternalFeedExpander
from .lite_rrule_expander import RecurrenceRuleEngine
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """Owns subscriptions, their refresh timers and their cached events."""

    def __init__(
        self,
        subscriptions: Iterable[Subscription] = (),
        fetcher: Optional[FeedFetcher] = None,
        expander: Optional[ExternalFeedExpander] = None,
    ):
        """Initialize manager.

        Args:
            subscriptions: Initial subscriptions
            fetcher: Feed fetcher (a default httpx-backed one when omitted)
            expander: Feed expander (default window and engine when omitted)
        """
        self.fetcher = fetcher or FeedFetcher()
        self.expander = expander or ExternalFeedExpander()
        self._subscriptions: dict[str, Subscription] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._timers: dict[str, asyncio.Task] = {}
        for subscription in subscriptions:
            self.add(subscription)

    @classmethod
    def from_config(cls, config: Config, fetcher: Optional[FeedFetcher] = None) -> "SubscriptionManager":
        """Build a manager from the ``subscriptions`` section of a Config."""
        expander = ExternalFeedExpander(
            engine=RecurrenceRuleEngine(max_periods=config.max_periods),
            expansion_days=config.feed_expansion_days,
        )
        subscriptions = []
        for entry in config.subscriptions:
            data: dict[str, Any] = {"refresh_interval_seconds": config.refresh_interval_seconds}
            data.update({k: v for k, v in entry.items() if k in Subscription.model_fields})
            subscriptions.append(Subscription(**data))
        return cls(subscriptions, fetcher=fetcher, expander=expander)

    # Snapshot access

    def add(self, subscription: Subscription) -> None:
        if subscription.id in self._subscriptions:
            raise ValueError(f"Duplicate subscription id: {subscription.id}")
        self._subscriptions[subscription.id] = subscription
        self._locks[subscription.id] = asyncio.Lock()

    def remove(self, subscription_id: str) -> None:
        timer = self._timers.pop(subscription_id, None)
        if timer is not None:
            timer.cancel()
        self._subscriptions.pop(subscription_id, None)
        self._locks.pop(subscription_id, None)

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(subscription_id)

    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def snapshot(self, subscription_id: str) -> tuple[FeedEvent, ...]:
        """Events of a subscription as of this moment (empty if unknown)."""
        subscription = self._subscriptions.get(subscription_id)
        return subscription.events if subscription is not None else ()

    def all_events(self) -> list[FeedEvent]:
        """Events of all enabled subscriptions."""
        events: list[FeedEvent] = []
        for subscription in list(self._subscriptions.values()):
            if subscription.enabled:
                events.extend(subscription.events)
        return events

    def colors(self) -> dict[str, str]:
        """Subscription id -> display color."""
        return {s.id: s.color for s in self._subscriptions.values()}

    # Refresh

    async def refresh(self, subscription_id: str) -> bool:
        """Refresh one subscription.

        Returns:
            True when a new snapshot was installed; False when the subscription
            is unknown or disabled, a refresh was already in flight, or the
            refresh failed (the error is recorded on the subscription)
        """
        lock = self._locks.get(subscription_id)
        if lock is None:
            logger.warning("Refresh requested for unknown subscription %s", subscription_id)
            return False
        if lock.locked():
            logger.debug("Refresh of %s already in flight; skipping", subscription_id)
            return False

        async with lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None or not subscription.enabled:
                return False

            try:
                text = await self.fetcher.fetch(subscription.source)
                events = await asyncio.to_thread(self.expander.parse, text, subscription_id)
            except (RefreshError, FeedParseError) as e:
                logger.warning("Refresh of subscription %s failed: %s", subscription_id, e)
                self._record_error(subscription_id, str(e))
                return False
            except Exception as e:
                logger.exception("Unexpected error refreshing subscription %s", subscription_id)
                self._record_error(subscription_id, f"Unexpected error: {e}")
                return False

            current = self._subscriptions.get(subscription_id)
            if current is None:
                return False
            self._subscriptions[subscription_id] = current.model_copy(
                update={
                    "events": tuple(events),
                    "last_synced_at": now_utc(),
                    "last_error": None,
                }
            )
            logger.info("Subscription %s refreshed: %d events", subscription_id, len(events))
            return True

    def _record_error(self, subscription_id: str, message: str) -> None:
        current = self._subscriptions.get(subscription_id)
        if current is not None:
            self._subscriptions[subscription_id] = current.model_copy(update={"last_error": message})

    async def refresh_all(self) -> dict[str, bool]:
        """Refresh every enabled subscription concurrently."""
        ids = [s.id for s in self._subscriptions.values() if s.enabled]
        results = await asyncio.gather(*(self.refresh(i) for i in ids))
        return dict(zip(ids, results))

    # Timers

    def start(self) -> None:
        """Start a periodic refresh task per enabled subscription.

        Must be called from a running event loop.
        """
        for subscription in self._subscriptions.values():
            if subscription.enabled and subscription.id not in self._timers:
                self._timers[subscription.id] = asyncio.create_task(
                    self._refresh_loop(subscription.id), name=f"refresh-{subscription.id}"
                )
        logger.debug("Started %d subscription timers", len(self._timers))

    async def _refresh_loop(self, subscription_id: str) -> None:
        while True:
            try:
                await self.refresh(subscription_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error refreshing subscription %s", subscription_id)
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                return
            await asyncio.sleep(subscription.refresh_interval_seconds)

    async def stop(self) -> None:
        """Cancel refresh timers and release the fetcher."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        await self.fetcher.aclose()
        logger.debug("Subscription manager stopped")
