"""
Listening Stats Service

Ingestion entry points for play-count and listened-time observations, plus
the change-notification subscriber list.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime
from typing import Callable

from soundstats.db.store import EventStore
from soundstats.services.models import (
    ListeningEvent,
    StatisticsSnapshot,
    TrackInfo,
    TrackMetadata,
    utc_now,
)
from soundstats.services.stats_aggregator import StatsAggregator, StatsPeriod

logger = logging.getLogger(__name__)

StatsListener = Callable[[], None]


class ListeningStatsService:
    """Service for logging listening observations."""

    def __init__(
        self,
        store: EventStore,
        clock: Callable[[], datetime] | None = None,
        aggregator: StatsAggregator | None = None,
    ) -> None:
        self.store = store
        self._clock = clock or utc_now
        self._aggregator = aggregator
        self._listeners: list[StatsListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: StatsListener) -> StatsListener:
        """
        Register a callback fired after every successful ingestion.

        Args:
            listener: Zero-argument callable

        Returns:
            The listener, so this can be used as a decorator
        """
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: StatsListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.warning(f"Stats listener {listener!r} failed: {e}")

    def _save_track(self, track: TrackInfo, now: datetime) -> None:
        self.store.upsert_track(TrackMetadata.from_track_info(track, now))

    def log_play(self, track: TrackInfo) -> None:
        """
        Record that a track crossed the play threshold.

        Each call appends one play; de-duplication is the caller's job.

        Args:
            track: Track that was played

        Raises:
            StoreError: If the store rejects the write
        """
        now = self._clock()
        self._save_track(track, now)
        self.store.append_event(ListeningEvent.play(track.url, now))
        logger.debug(f"Logged play for {track.artist} - {track.title}")
        self._notify()

    def log_listened_time(self, track: TrackInfo, seconds: float) -> bool:
        """
        Record seconds of continuous listening.

        Args:
            track: Track being listened to
            seconds: Listened seconds; non-positive values are ignored

        Returns:
            True if an event was written

        Raises:
            ValueError: If seconds is NaN or infinite
            StoreError: If the store rejects the write
        """
        if not math.isfinite(seconds):
            raise ValueError(f"Listened seconds must be finite, got {seconds!r}")
        if seconds <= 0:
            return False

        now = self._clock()
        self._save_track(track, now)
        self.store.append_event(ListeningEvent.listened(track.url, now, seconds))
        logger.debug(f"Logged {seconds:.1f}s for {track.artist} - {track.title}")
        self._notify()
        return True

    def get_stats(self, period: str | StatsPeriod) -> StatisticsSnapshot:
        """Compute a snapshot for a period."""
        if self._aggregator is None:
            self._aggregator = StatsAggregator(self.store, clock=self._clock)
        return self._aggregator.compute_snapshot(period)


# Singleton instance
_service: ListeningStatsService | None = None


def get_listening_stats_service() -> ListeningStatsService:
    """Get the singleton ListeningStatsService instance."""
    global _service
    if _service is None:
        from soundstats.db.factory import get_event_store

        _service = ListeningStatsService(get_event_store())
    return _service


def reset_listening_stats_service() -> None:
    """Drop the singleton so the next call rebinds to the current store."""
    global _service
    _service = None
