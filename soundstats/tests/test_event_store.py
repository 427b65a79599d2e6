"""Tests for the memory and SQLite event store backends."""

from datetime import timedelta

import pytest

from soundstats.db.sqlite_store import SqliteEventStore
from soundstats.db.store import StoreError
from soundstats.services.models import ListeningEvent, TrackMetadata

from conftest import NOW

HOUR = timedelta(hours=1)


def _track(track_id: str, title: str = "Title", created=NOW) -> TrackMetadata:
    return TrackMetadata(
        track_id=track_id,
        title=title,
        artist="Artist",
        duration=180,
        artwork=None,
        created_at=created,
        updated_at=created,
    )


def test_upsert_overwrites_fields_but_keeps_created_at(store):
    store.upsert_track(_track("a", title="Old"))
    store.upsert_track(_track("a", title="New", created=NOW + HOUR))

    tracks = store.list_all_tracks()

    assert len(tracks) == 1
    assert tracks[0].title == "New"
    assert tracks[0].created_at == NOW
    assert tracks[0].updated_at == NOW + HOUR


def test_get_track(store):
    store.upsert_track(_track("a"))

    assert store.get_track("a").title == "Title"
    assert store.get_track("missing") is None


def test_queries_return_events_in_time_order(store):
    store.append_event(ListeningEvent.play("b", NOW - HOUR))
    store.append_event(ListeningEvent.listened("a", NOW - 3 * HOUR, 12.5))
    store.append_event(ListeningEvent.play("a", NOW - 2 * HOUR))

    since = store.query_events_since(NOW - 2 * HOUR)
    before = store.query_events_before(NOW - 2 * HOUR)
    bounded = store.query_events_since(NOW - 3 * HOUR, NOW - HOUR)

    assert [(e.track_id, e.is_play_count) for e in since] == [("a", True), ("b", True)]
    assert [(e.track_id, e.listened_seconds) for e in before] == [("a", 12.5)]
    assert [e.timestamp for e in bounded] == [NOW - 3 * HOUR, NOW - 2 * HOUR]


def test_earliest_event_time(store):
    assert store.earliest_event_time() is None

    store.append_event(ListeningEvent.play("a", NOW - HOUR))
    store.append_event(ListeningEvent.play("a", NOW - 5 * HOUR))

    assert store.earliest_event_time() == NOW - 5 * HOUR


def test_sqlite_store_persists_across_reopen(tmp_path):
    path = tmp_path / "nested" / "history.sqlite3"
    first = SqliteEventStore(path)
    first.upsert_track(_track("a"))
    first.append_event(ListeningEvent.listened("a", NOW, 30))
    first.close()

    reopened = SqliteEventStore(path)
    try:
        events = reopened.query_events_since(NOW - HOUR)
        assert len(events) == 1
        assert events[0].listened_seconds == 30
        assert events[0].timestamp == NOW
        assert reopened.get_track("a") is not None
    finally:
        reopened.close()


def test_sqlite_errors_surface_as_store_error(tmp_path):
    sqlite_store = SqliteEventStore(tmp_path / "history.sqlite3")
    sqlite_store.close()

    with pytest.raises(StoreError):
        sqlite_store.append_event(ListeningEvent.play("a", NOW))
    with pytest.raises(StoreError):
        sqlite_store.query_events_since(NOW)


def test_event_invariants_are_enforced():
    with pytest.raises(ValueError):
        ListeningEvent(track_id="a", timestamp=NOW, listened_seconds=5, is_play_count=True)
    with pytest.raises(ValueError):
        ListeningEvent.listened("a", NOW, -1)
    with pytest.raises(ValueError):
        ListeningEvent.play("a", NOW.replace(tzinfo=None))


@pytest.mark.parametrize("seconds", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_seconds_are_rejected(seconds):
    with pytest.raises(ValueError):
        ListeningEvent.listened("a", NOW, seconds)


def test_range_bounds_are_exact_to_the_microsecond(store):
    tick = timedelta(microseconds=1)
    store.append_event(ListeningEvent.play("early", NOW - tick))
    store.append_event(ListeningEvent.play("edge", NOW))
    store.append_event(ListeningEvent.listened("late", NOW + 499 * tick, 3))

    since = store.query_events_since(NOW)
    before = store.query_events_before(NOW)

    assert [e.track_id for e in since] == ["edge", "late"]
    assert since[1].timestamp == NOW + 499 * tick
    assert [e.track_id for e in before] == ["early"]
    assert store.earliest_event_time() == NOW - tick
