"""Event store interface and the in-memory backend."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime

from soundstats.services.models import ListeningEvent, TrackMetadata

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the underlying storage backend fails."""


class EventStore(ABC):
    """
    Append-only store of listening events plus a track metadata table.

    Implementations must make single-document writes atomic so that a
    concurrent reader never observes a half-written event.
    """

    name = "abstract"

    @abstractmethod
    def upsert_track(self, metadata: TrackMetadata) -> None:
        """
        Insert or overwrite the metadata record for a track.

        The first-seen ``created_at`` is kept when the record already exists.
        """

    @abstractmethod
    def append_event(self, event: ListeningEvent) -> None:
        """Append one listening event."""

    @abstractmethod
    def query_events_since(
        self,
        since: datetime,
        until: datetime | None = None,
    ) -> list[ListeningEvent]:
        """
        Fetch events with ``since <= timestamp`` (and ``timestamp < until``).

        Args:
            since: Inclusive lower bound
            until: Optional exclusive upper bound

        Returns:
            Events in ascending timestamp order
        """

    @abstractmethod
    def query_events_before(self, before: datetime) -> list[ListeningEvent]:
        """Fetch events strictly before ``before``, ascending."""

    @abstractmethod
    def list_all_tracks(self) -> list[TrackMetadata]:
        """Fetch every track metadata record."""

    @abstractmethod
    def get_track(self, track_id: str) -> TrackMetadata | None:
        """Fetch a single track metadata record."""

    @abstractmethod
    def earliest_event_time(self) -> datetime | None:
        """Timestamp of the oldest stored event, if any."""

    def close(self) -> None:
        """Release backend resources."""


class MemoryEventStore(EventStore):
    """Lock-guarded in-memory store, used for tests and ephemeral runs."""

    name = "memory"

    def __init__(self) -> None:
        self._tracks: dict[str, TrackMetadata] = {}
        self._events: list[ListeningEvent] = []
        self._lock = threading.Lock()

    def upsert_track(self, metadata: TrackMetadata) -> None:
        with self._lock:
            existing = self._tracks.get(metadata.track_id)
            if existing is not None:
                metadata = replace(metadata, created_at=existing.created_at)
            self._tracks[metadata.track_id] = metadata

    def append_event(self, event: ListeningEvent) -> None:
        with self._lock:
            self._events.append(event)

    def query_events_since(
        self,
        since: datetime,
        until: datetime | None = None,
    ) -> list[ListeningEvent]:
        with self._lock:
            events = [
                e for e in self._events
                if e.timestamp >= since and (until is None or e.timestamp < until)
            ]
        return sorted(events, key=lambda e: e.timestamp)

    def query_events_before(self, before: datetime) -> list[ListeningEvent]:
        with self._lock:
            events = [e for e in self._events if e.timestamp < before]
        return sorted(events, key=lambda e: e.timestamp)

    def list_all_tracks(self) -> list[TrackMetadata]:
        with self._lock:
            return list(self._tracks.values())

    def get_track(self, track_id: str) -> TrackMetadata | None:
        with self._lock:
            return self._tracks.get(track_id)

    def earliest_event_time(self) -> datetime | None:
        with self._lock:
            if not self._events:
                return None
            return min(e.timestamp for e in self._events)
