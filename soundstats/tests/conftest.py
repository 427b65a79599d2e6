"""Shared fixtures for listening statistics tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from soundstats.db.sqlite_store import SqliteEventStore
from soundstats.db.store import MemoryEventStore
from soundstats.services.models import ListeningEvent, TrackMetadata

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


class HistoryBuilder:
    """Writes tracks and events straight into a store."""

    def __init__(self, store, now: datetime = NOW) -> None:
        self.store = store
        self.now = now

    def track(
        self,
        track_id: str,
        title: str | None = None,
        artist: str = "Artist",
        duration: float = 200,
        artwork: str | None = None,
    ) -> str:
        self.store.upsert_track(
            TrackMetadata(
                track_id=track_id,
                title=title or track_id,
                artist=artist,
                duration=duration,
                artwork=artwork,
                created_at=self.now,
                updated_at=self.now,
            )
        )
        return track_id

    def play(self, track_id: str, ago: timedelta) -> ListeningEvent:
        event = ListeningEvent.play(track_id, self.now - ago)
        self.store.append_event(event)
        return event

    def plays(self, track_ids: list[str], ago: timedelta, step: timedelta = timedelta(minutes=4)):
        """Log plays in order, ``step`` apart, starting ``ago`` before now."""
        for index, track_id in enumerate(track_ids):
            self.play(track_id, ago - step * index)

    def listened(self, track_id: str, seconds: float, ago: timedelta) -> ListeningEvent:
        event = ListeningEvent.listened(track_id, self.now - ago, seconds)
        self.store.append_event(event)
        return event


@pytest.fixture
def memory_store():
    return MemoryEventStore()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryEventStore()
        return
    sqlite_store = SqliteEventStore(tmp_path / "history.sqlite3")
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def history(store):
    return HistoryBuilder(store)
