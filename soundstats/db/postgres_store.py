"""Postgres backend for the listening event store."""

from __future__ import annotations

import logging
from datetime import datetime

from soundstats.db.connection import close_pool, get_pool_stats, transaction
from soundstats.db.migrate import apply_pending_migrations
from soundstats.db.store import EventStore
from soundstats.services.models import ListeningEvent, TrackMetadata

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = "track_id, timestamp, listened_seconds, is_play_count"
_TRACK_COLUMNS = "track_id, title, artist, duration, artwork, created_at, updated_at"


def _row_to_event(row: tuple) -> ListeningEvent:
    return ListeningEvent(
        track_id=row[0],
        timestamp=row[1],
        listened_seconds=float(row[2] or 0),
        is_play_count=bool(row[3]),
    )


def _row_to_track(row: tuple) -> TrackMetadata:
    return TrackMetadata(
        track_id=row[0],
        title=row[1],
        artist=row[2],
        duration=float(row[3] or 0),
        artwork=row[4],
        created_at=row[5],
        updated_at=row[6],
    )


class PostgresEventStore(EventStore):
    """Store backed by the shared psycopg connection pool."""

    name = "postgres"

    def __init__(self, migrate: bool = True) -> None:
        if migrate:
            applied = apply_pending_migrations()
            if applied:
                logger.info(f"Applied {len(applied)} listening schema migration(s)")

    def _fetch(self, query: str, params: tuple = ()) -> list[tuple]:
        with transaction("query") as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def _write(self, query: str, params: tuple) -> None:
        with transaction("write") as cur:
            cur.execute(query, params)

    def upsert_track(self, metadata: TrackMetadata) -> None:
        self._write(
            f"""
            INSERT INTO tracks ({_TRACK_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (track_id) DO UPDATE SET
                title = EXCLUDED.title,
                artist = EXCLUDED.artist,
                duration = EXCLUDED.duration,
                artwork = EXCLUDED.artwork,
                updated_at = EXCLUDED.updated_at
            """,
            (
                metadata.track_id,
                metadata.title,
                metadata.artist,
                metadata.duration,
                metadata.artwork,
                metadata.created_at,
                metadata.updated_at,
            ),
        )

    def append_event(self, event: ListeningEvent) -> None:
        self._write(
            f"""
            INSERT INTO listening_history ({_EVENT_COLUMNS})
            VALUES (%s, %s, %s, %s)
            """,
            (event.track_id, event.timestamp, event.listened_seconds, event.is_play_count),
        )

    def query_events_since(
        self,
        since: datetime,
        until: datetime | None = None,
    ) -> list[ListeningEvent]:
        if until is None:
            rows = self._fetch(
                f"""
                SELECT {_EVENT_COLUMNS} FROM listening_history
                WHERE timestamp >= %s
                ORDER BY timestamp ASC, event_id ASC
                """,
                (since,),
            )
        else:
            rows = self._fetch(
                f"""
                SELECT {_EVENT_COLUMNS} FROM listening_history
                WHERE timestamp >= %s AND timestamp < %s
                ORDER BY timestamp ASC, event_id ASC
                """,
                (since, until),
            )
        return [_row_to_event(row) for row in rows]

    def query_events_before(self, before: datetime) -> list[ListeningEvent]:
        rows = self._fetch(
            f"""
            SELECT {_EVENT_COLUMNS} FROM listening_history
            WHERE timestamp < %s
            ORDER BY timestamp ASC, event_id ASC
            """,
            (before,),
        )
        return [_row_to_event(row) for row in rows]

    def list_all_tracks(self) -> list[TrackMetadata]:
        rows = self._fetch(f"SELECT {_TRACK_COLUMNS} FROM tracks")
        return [_row_to_track(row) for row in rows]

    def get_track(self, track_id: str) -> TrackMetadata | None:
        rows = self._fetch(
            f"SELECT {_TRACK_COLUMNS} FROM tracks WHERE track_id = %s",
            (track_id,),
        )
        return _row_to_track(rows[0]) if rows else None

    def earliest_event_time(self) -> datetime | None:
        rows = self._fetch("SELECT MIN(timestamp) FROM listening_history")
        return rows[0][0] if rows else None

    def pool_stats(self) -> dict:
        return get_pool_stats()

    def close(self) -> None:
        close_pool()
