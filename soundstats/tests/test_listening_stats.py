"""Tests for the ingestion service and the playback tracker."""

from datetime import timedelta
from itertools import count

import pytest

from soundstats.db.store import MemoryEventStore, StoreError
from soundstats.services.listening_stats import ListeningStatsService
from soundstats.services.models import TrackInfo
from soundstats.services.playback_tracker import PlaybackTracker
from soundstats.services.stats_aggregator import StatsAggregator

from conftest import NOW

TRACK_A = TrackInfo(url="https://soundcloud.com/x/a", title="A", artist="X", duration=200)
TRACK_B = TrackInfo(url="https://soundcloud.com/y/b", title="B", artist="Y", duration=100)


class FailingStore(MemoryEventStore):
    def append_event(self, event):
        raise StoreError("disk full")


def _ticking_clock():
    ticks = count()
    return lambda: NOW - timedelta(hours=1) + timedelta(minutes=next(ticks))


@pytest.fixture
def service(memory_store):
    return ListeningStatsService(memory_store, clock=_ticking_clock())


def test_play_time_play_scenario(service, memory_store):
    """Two plays and one time event: plays count once each, time only once."""
    service.log_play(TRACK_A)
    service.log_listened_time(TRACK_A, 150)
    service.log_play(TRACK_B)

    snapshot = StatsAggregator(memory_store).compute_snapshot("weekly", now=NOW)

    assert snapshot.total_plays == 2
    assert snapshot.total_listening_seconds == 150
    assert [t.track_id for t in snapshot.top_tracks] == [TRACK_A.url, TRACK_B.url]


def test_log_play_writes_metadata_and_zero_second_event(service, memory_store):
    service.log_play(TRACK_A)

    events = memory_store.query_events_since(NOW - timedelta(days=1))
    assert len(events) == 1
    assert events[0].is_play_count
    assert events[0].listened_seconds == 0
    assert memory_store.get_track(TRACK_A.url).title == "A"


def test_metadata_is_overwritten_by_later_writes(service, memory_store):
    service.log_play(TRACK_A)
    renamed = TrackInfo(url=TRACK_A.url, title="A (Remix)", artist="X", duration=200)
    service.log_listened_time(renamed, 10)

    assert len(memory_store.list_all_tracks()) == 1
    assert memory_store.get_track(TRACK_A.url).title == "A (Remix)"


@pytest.mark.parametrize("seconds", [0, -3])
def test_non_positive_time_is_ignored(service, memory_store, seconds):
    calls = []
    service.subscribe(lambda: calls.append(1))

    assert service.log_listened_time(TRACK_A, seconds) is False
    assert memory_store.query_events_since(NOW - timedelta(days=1)) == []
    assert memory_store.list_all_tracks() == []
    assert calls == []


def test_subscribers_notified_once_per_ingestion(service):
    calls = []
    listener = service.subscribe(lambda: calls.append("changed"))

    service.log_play(TRACK_A)
    service.log_listened_time(TRACK_A, 12)
    assert calls == ["changed", "changed"]

    service.unsubscribe(listener)
    service.log_play(TRACK_A)
    assert len(calls) == 2


def test_failing_subscriber_does_not_break_ingestion(service, memory_store):
    calls = []

    def broken():
        raise RuntimeError("view gone")

    service.subscribe(broken)
    service.subscribe(lambda: calls.append(1))

    service.log_play(TRACK_A)

    assert calls == [1]
    assert len(memory_store.query_events_since(NOW - timedelta(days=1))) == 1


def test_store_failure_propagates_without_notification():
    service = ListeningStatsService(FailingStore(), clock=_ticking_clock())
    calls = []
    service.subscribe(lambda: calls.append(1))

    with pytest.raises(StoreError):
        service.log_play(TRACK_A)
    assert calls == []


def test_get_stats_delegates_to_aggregator(memory_store):
    service = ListeningStatsService(memory_store, clock=lambda: NOW)
    service.log_play(TRACK_A)

    assert service.get_stats("weekly").total_plays == 1


@pytest.fixture
def tracker(service):
    return PlaybackTracker(service, play_threshold=0.5, max_poll_gap=10.0)


def _events(store):
    return store.query_events_since(NOW - timedelta(days=1))


def test_tracker_logs_play_once_after_threshold(tracker, memory_store):
    short = TrackInfo(url="u", title="Short", artist="X", duration=10)
    for second in range(0, 12):
        tracker.update(short, True, now=float(second))

    plays = [e for e in _events(memory_store) if e.is_play_count]
    assert len(plays) == 1
    assert tracker.session.logged_play


def test_tracker_flushes_time_on_pause(tracker, memory_store):
    for second in range(0, 4):
        tracker.update(TRACK_A, True, now=float(second))
    tracker.update(TRACK_A, False, now=4.0)

    events = _events(memory_store)
    assert [e.listened_seconds for e in events] == [3.0]

    # Pausing again has nothing left to flush
    tracker.update(TRACK_A, False, now=5.0)
    assert len(_events(memory_store)) == 1


def test_tracker_flushes_previous_track_on_change(tracker, memory_store):
    tracker.update(TRACK_A, True, now=0.0)
    tracker.update(TRACK_A, True, now=2.0)
    tracker.update(TRACK_B, True, now=3.0)

    events = _events(memory_store)
    assert len(events) == 1
    assert events[0].track_id == TRACK_A.url
    assert events[0].listened_seconds == 2.0
    assert tracker.session.track == TRACK_B


def test_tracker_ignores_large_gaps(tracker, memory_store):
    tracker.update(TRACK_A, True, now=0.0)
    tracker.update(TRACK_A, True, now=1.0)
    tracker.update(TRACK_A, True, now=500.0)
    tracker.flush()

    assert [e.listened_seconds for e in _events(memory_store)] == [1.0]


def test_tracker_pauses_for_automation(tracker, memory_store):
    tracker.paused_for_automation = True
    for second in range(0, 200):
        tracker.update(TRACK_B, True, now=float(second))
    tracker.flush()

    assert _events(memory_store) == []


def test_tracker_drops_measurement_when_store_fails():
    service = ListeningStatsService(FailingStore(), clock=_ticking_clock())
    tracker = PlaybackTracker(service, play_threshold=0.5, max_poll_gap=10.0)

    tracker.update(TRACK_A, True, now=0.0)
    tracker.update(TRACK_A, True, now=5.0)
    tracker.update(TRACK_A, False, now=6.0)

    assert tracker.session.accumulated == 0


@pytest.mark.parametrize("seconds", [float("nan"), float("inf")])
def test_non_finite_time_is_rejected_before_writing(service, memory_store, seconds):
    calls = []
    service.subscribe(lambda: calls.append(1))

    with pytest.raises(ValueError):
        service.log_listened_time(TRACK_A, seconds)

    assert memory_store.query_events_since(NOW - timedelta(days=1)) == []
    assert memory_store.list_all_tracks() == []
    assert calls == []
    assert service.get_stats("weekly").total_listening_seconds == 0
