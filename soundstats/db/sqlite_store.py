"""Embedded SQLite backend for the listening event store."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from soundstats.db.store import EventStore, StoreError
from soundstats.services.models import ListeningEvent, TrackMetadata

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS tracks (
    track_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    artist TEXT NOT NULL,
    duration REAL NOT NULL DEFAULT 0,
    artwork TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS listening_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    track_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    listened_seconds REAL NOT NULL DEFAULT 0,
    is_play_count INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_history_timestamp ON listening_history(timestamp);
CREATE INDEX IF NOT EXISTS idx_history_track_id ON listening_history(track_id);
"""


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def _to_micros(value: datetime) -> int:
    # Integer arithmetic keeps full datetime precision, so range queries match
    # the in-memory comparison exactly
    return (value - _EPOCH) // _MICROSECOND


def _from_micros(value: int) -> datetime:
    return _EPOCH + value * _MICROSECOND


def _row_to_event(row: sqlite3.Row) -> ListeningEvent:
    return ListeningEvent(
        track_id=row["track_id"],
        timestamp=_from_micros(row["timestamp"]),
        listened_seconds=row["listened_seconds"],
        is_play_count=bool(row["is_play_count"]),
    )


def _row_to_track(row: sqlite3.Row) -> TrackMetadata:
    return TrackMetadata(
        track_id=row["track_id"],
        title=row["title"],
        artist=row["artist"],
        duration=row["duration"],
        artwork=row["artwork"],
        created_at=_from_micros(row["created_at"]),
        updated_at=_from_micros(row["updated_at"]),
    )


class SqliteEventStore(EventStore):
    """Single-connection SQLite store; every statement runs under one lock."""

    name = "sqlite"

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path) if str(path) != ":memory:" else path
        if isinstance(self.path, Path):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._closed = False
        try:
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to open SQLite store at {self.path}: {exc}") from exc
        logger.info(f"Opened SQLite listening store at {self.path}")

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError(f"SQLite store at {self.path} is closed")

    def _fetch(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            self._ensure_open()
            try:
                return self._conn.execute(query, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"SQLite query failed: {exc}") from exc

    def _write(self, query: str, params: tuple) -> None:
        with self._lock:
            self._ensure_open()
            try:
                self._conn.execute(query, params)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(f"SQLite write failed: {exc}") from exc

    def upsert_track(self, metadata: TrackMetadata) -> None:
        self._write(
            """
            INSERT INTO tracks (track_id, title, artist, duration, artwork, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(track_id) DO UPDATE SET
                title = excluded.title,
                artist = excluded.artist,
                duration = excluded.duration,
                artwork = excluded.artwork,
                updated_at = excluded.updated_at
            """,
            (
                metadata.track_id,
                metadata.title,
                metadata.artist,
                metadata.duration,
                metadata.artwork,
                _to_micros(metadata.created_at),
                _to_micros(metadata.updated_at),
            ),
        )

    def append_event(self, event: ListeningEvent) -> None:
        self._write(
            """
            INSERT INTO listening_history (track_id, timestamp, listened_seconds, is_play_count)
            VALUES (?, ?, ?, ?)
            """,
            (
                event.track_id,
                _to_micros(event.timestamp),
                event.listened_seconds,
                1 if event.is_play_count else 0,
            ),
        )

    def query_events_since(
        self,
        since: datetime,
        until: datetime | None = None,
    ) -> list[ListeningEvent]:
        query = "SELECT * FROM listening_history WHERE timestamp >= ?"
        params: list[int] = [_to_micros(since)]
        if until is not None:
            query += " AND timestamp < ?"
            params.append(_to_micros(until))
        query += " ORDER BY timestamp ASC, id ASC"
        return [_row_to_event(row) for row in self._fetch(query, tuple(params))]

    def query_events_before(self, before: datetime) -> list[ListeningEvent]:
        rows = self._fetch(
            "SELECT * FROM listening_history WHERE timestamp < ? ORDER BY timestamp ASC, id ASC",
            (_to_micros(before),),
        )
        return [_row_to_event(row) for row in rows]

    def list_all_tracks(self) -> list[TrackMetadata]:
        return [_row_to_track(row) for row in self._fetch("SELECT * FROM tracks")]

    def get_track(self, track_id: str) -> TrackMetadata | None:
        rows = self._fetch("SELECT * FROM tracks WHERE track_id = ?", (track_id,))
        return _row_to_track(rows[0]) if rows else None

    def earliest_event_time(self) -> datetime | None:
        rows = self._fetch("SELECT MIN(timestamp) AS earliest FROM listening_history")
        if not rows or rows[0]["earliest"] is None:
            return None
        return _from_micros(rows[0]["earliest"])

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()
        logger.info(f"Closed SQLite listening store at {self.path}")
