"""
Statistics Change Signal

Tells stream clients that listening statistics changed. A change carries no
statistics: clients re-query the snapshot endpoint. Each subscriber holds at
most one pending change, so a burst of ingestions collapses into a single
notification whose ``coalesced`` count says how many changes it stands for.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from soundstats.services.models import utc_now

STATS_UPDATED = "stats_updated"


@dataclass(frozen=True)
class StatsChange:
    """The latest change a subscriber has not seen yet."""

    version: int
    changed_at: datetime
    coalesced: int = 1

    def to_message(self) -> dict[str, Any]:
        return {
            "type": STATS_UPDATED,
            "version": self.version,
            "timestamp": self.changed_at.isoformat(),
            "coalesced": self.coalesced,
        }


class StatsSubscription:
    """One client's view of the change signal."""

    def __init__(self, seen_version: int) -> None:
        self._condition = threading.Condition()
        self._seen_version = seen_version
        self._pending: StatsChange | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, change: StatsChange) -> None:
        with self._condition:
            if self._closed or change.version <= self._seen_version:
                return
            # Concurrent notify() calls may arrive out of order; keep the newest
            if self._pending is not None and self._pending.version >= change.version:
                return
            self._pending = change
            self._condition.notify_all()

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._pending = None
            self._condition.notify_all()

    def wait(self, timeout: float | None = None) -> StatsChange | None:
        """
        Block until a change arrives or the timeout expires.

        Args:
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            The newest unseen change, or None on timeout or after close
        """
        with self._condition:
            if self._pending is None and not self._closed:
                self._condition.wait(timeout)
            change = self._pending
            self._pending = None
            if change is None:
                return None
            coalesced = change.version - self._seen_version
            self._seen_version = change.version
        return replace(change, coalesced=coalesced)


class StatsChangeHub:
    """Thread-safe, versioned change signal shared by all stream clients."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._subscriptions: set[StatsSubscription] = set()
        self._version = 0

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self) -> StatsSubscription:
        """Start listening; only changes after this call are delivered."""
        with self._lock:
            subscription = StatsSubscription(self._version)
            self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: StatsSubscription) -> None:
        with self._lock:
            self._subscriptions.discard(subscription)
        subscription.close()

    def notify(self) -> StatsChange:
        """Record one change and wake every subscriber."""
        with self._lock:
            self._version += 1
            change = StatsChange(version=self._version, changed_at=self._clock())
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription._offer(change)
        return change


_change_hub: StatsChangeHub | None = None
_change_hub_lock = threading.Lock()


def get_stats_change_hub() -> StatsChangeHub:
    """Get the singleton StatsChangeHub instance."""
    global _change_hub
    with _change_hub_lock:
        if _change_hub is None:
            _change_hub = StatsChangeHub()
        return _change_hub


def notify_stats_changed() -> None:
    """ListeningStatsService subscriber that forwards ingestions to the hub."""
    get_stats_change_hub().notify()
