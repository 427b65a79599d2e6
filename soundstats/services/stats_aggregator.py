"""
Statistics Aggregator Service

Computes listening statistics snapshots from the raw event log. Every query
recomputes from the store; nothing is cached between ingestions.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable

from soundstats import app_settings
from soundstats.db.store import EventStore
from soundstats.services.models import (
    UNKNOWN_ARTIST,
    UNKNOWN_TITLE,
    BusiestDay,
    CalendarDay,
    ListeningDuration,
    ListeningEvent,
    PeriodComparison,
    RankedArtist,
    RankedTrack,
    Rediscovery,
    RepeatRun,
    StatisticsSnapshot,
    TrackMetadata,
    utc_now,
)

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)

# Defaults, overridable through the "stats" settings section
OBSESSION_GAP = 2  # Other plays tolerated inside one repeat run
REDISCOVERY_MIN_PLAYS = 5
REDISCOVERY_LIMIT = 5
TOP_LIMIT = 10


class StatsPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    THIS_YEAR = "thisYear"
    ALL_TIME = "allTime"


class InvalidPeriodError(ValueError):
    """Raised for a period name outside StatsPeriod."""


def parse_period(period: str | StatsPeriod) -> StatsPeriod:
    """
    Validate a period name.

    Args:
        period: One of 'weekly', 'monthly', 'thisYear', 'allTime'

    Returns:
        The matching StatsPeriod

    Raises:
        InvalidPeriodError: For anything else; there is no default period
    """
    if isinstance(period, StatsPeriod):
        return period
    try:
        return StatsPeriod(period)
    except ValueError:
        valid = ", ".join(p.value for p in StatsPeriod)
        raise InvalidPeriodError(
            f"Invalid period {period!r}. Must be one of: {valid}"
        ) from None


def format_duration(seconds: float | None) -> str:
    """Format seconds to human-readable duration."""
    if not seconds:
        return "0m"
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    remaining_minutes = minutes % 60
    if hours < 24:
        return f"{hours}h {remaining_minutes}m"
    days = hours // 24
    remaining_hours = hours % 24
    return f"{days}d {remaining_hours}h"


def percent_change(current: float, previous: float) -> float:
    if previous > 0:
        return round((current - previous) / previous * 100, 1)
    return 100.0 if current > 0 else 0.0


def _ceil_days(span: timedelta) -> int:
    return max(1, math.ceil(span.total_seconds() / DAY.total_seconds()))


@dataclass(frozen=True)
class StatsWindow:
    """Current window plus the comparison window preceding it."""

    start: datetime
    end: datetime
    days: int
    previous_start: datetime | None = None
    previous_end: datetime | None = None
    previous_days: int = 0

    @property
    def has_comparison(self) -> bool:
        return self.previous_start is not None


def resolve_window(
    period: StatsPeriod,
    now: datetime,
    earliest: datetime | None = None,
) -> StatsWindow:
    """
    Resolve the time bounds for a period.

    Args:
        period: Period to resolve
        now: Reference time (timezone-aware)
        earliest: Oldest event in the store, used for the all-time window

    Returns:
        StatsWindow with the comparison window filled in where one exists
    """
    if period is StatsPeriod.WEEKLY or period is StatsPeriod.MONTHLY:
        length = 7 if period is StatsPeriod.WEEKLY else 30
        start = now - timedelta(days=length)
        return StatsWindow(
            start=start,
            end=now,
            days=length,
            previous_start=start - timedelta(days=length),
            previous_end=start,
            previous_days=length,
        )

    if period is StatsPeriod.THIS_YEAR:
        year = now.astimezone().year
        # Naive local midnight, so each boundary gets the UTC offset in force on that date
        start = datetime(year, 1, 1).astimezone()
        previous_start = datetime(year - 1, 1, 1).astimezone()
        return StatsWindow(
            start=start,
            end=now,
            days=_ceil_days(now - start),
            previous_start=previous_start,
            previous_end=start,
            previous_days=(date(year, 1, 1) - date(year - 1, 1, 1)).days,
        )

    # All time: the window length depends on when the first event was logged
    start = earliest or now
    return StatsWindow(start=start, end=now, days=_ceil_days(now - start))


@dataclass
class _Run:
    count: int
    last_index: int


def find_max_repeats(
    track_ids: Iterable[str],
    gap: int = OBSESSION_GAP,
) -> tuple[str, int] | None:
    """
    Find the longest near-consecutive run of plays of one track.

    A run survives up to ``gap`` plays of other tracks since its last
    occurrence; one more closes it. Ties keep the run that was closed first,
    and runs still open at the end are closed in the order they started.

    Args:
        track_ids: Track identifiers of play-count events, chronological
        gap: Number of other plays a run tolerates

    Returns:
        (track_id, count) of the best run, or None when there are no plays
    """
    active: dict[str, _Run] = {}
    best: tuple[str, int] | None = None

    def close(track_id: str, run: _Run) -> None:
        nonlocal best
        if best is None or run.count > best[1]:
            best = (track_id, run.count)

    for index, track_id in enumerate(track_ids):
        for other_id in list(active):
            if other_id == track_id:
                continue
            run = active[other_id]
            if index - run.last_index > gap:
                close(other_id, run)
                del active[other_id]

        run = active.get(track_id)
        if run is None:
            active[track_id] = _Run(count=1, last_index=index)
        else:
            run.count += 1
            run.last_index = index

    for track_id, run in active.items():
        close(track_id, run)

    return best


@dataclass
class _DayBucket:
    play_count: int = 0
    artworks: dict[str, None] = field(default_factory=dict)  # ordered set


@dataclass
class RawMetrics:
    """Output of one metrics pass over an event list."""

    days: int
    total_plays: int = 0
    total_seconds: float = 0.0
    track_plays: dict[str, int] = field(default_factory=dict)
    artist_plays: dict[str, int] = field(default_factory=dict)
    artist_seconds: dict[str, float] = field(default_factory=dict)
    artist_artwork: dict[str, str | None] = field(default_factory=dict)
    hourly: list[int] = field(default_factory=lambda: [0] * 24)
    day_tracks: dict[date, set[str]] = field(default_factory=dict)
    day_seconds: dict[date, float] = field(default_factory=dict)
    calendar: dict[date, _DayBucket] = field(default_factory=dict)
    max_repeats: tuple[str, int] | None = None

    @property
    def unique_tracks(self) -> int:
        return len(self.track_plays)

    @property
    def unique_artists(self) -> int:
        return len(self.artist_plays)

    @property
    def active_days(self) -> int:
        return sum(1 for seconds in self.day_seconds.values() if seconds > 0)

    @property
    def variety_score(self) -> float:
        if not self.total_plays:
            return 0.0
        return self.unique_tracks / self.total_plays * 100

    @property
    def obsession_rate(self) -> float:
        if not self.total_plays:
            return 0.0
        return max(self.track_plays.values()) / self.total_plays * 100

    @property
    def average_track_length(self) -> float:
        if not self.total_plays:
            return 0.0
        return self.total_seconds / self.total_plays

    @property
    def consistency_score(self) -> float:
        return min(100.0, self.active_days / self.days * 100)

    @property
    def average_daily_listening(self) -> float:
        return self.total_seconds / self.days


def collect_metrics(
    events: Iterable[ListeningEvent],
    tracks: dict[str, TrackMetadata],
    days: int,
    obsession_gap: int = OBSESSION_GAP,
) -> RawMetrics:
    """
    Run the single metrics pass over an event list.

    Args:
        events: Events of one window, any order
        tracks: Track metadata by identifier
        days: Number of days in the window, for rate metrics
        obsession_gap: Gap tolerance of the repeat-run detector

    Returns:
        RawMetrics for the window
    """
    metrics = RawMetrics(days=max(1, days))
    play_sequence: list[str] = []

    for event in sorted(events, key=lambda e: e.timestamp):
        local = event.timestamp.astimezone()
        day = local.date()
        meta = tracks.get(event.track_id)
        artist = meta.artist if meta else UNKNOWN_ARTIST

        metrics.total_seconds += event.listened_seconds
        metrics.day_seconds[day] = metrics.day_seconds.get(day, 0.0) + event.listened_seconds
        metrics.artist_seconds[artist] = (
            metrics.artist_seconds.get(artist, 0.0) + event.listened_seconds
        )

        if not event.is_play_count:
            continue

        metrics.total_plays += 1
        play_sequence.append(event.track_id)
        metrics.track_plays[event.track_id] = metrics.track_plays.get(event.track_id, 0) + 1
        metrics.artist_plays[artist] = metrics.artist_plays.get(artist, 0) + 1
        if artist not in metrics.artist_artwork:
            metrics.artist_artwork[artist] = meta.artwork if meta else None
        metrics.hourly[local.hour] += 1
        metrics.day_tracks.setdefault(day, set()).add(event.track_id)

        bucket = metrics.calendar.setdefault(day, _DayBucket())
        bucket.play_count += 1
        if meta and meta.artwork:
            bucket.artworks[meta.artwork] = None

    metrics.max_repeats = find_max_repeats(play_sequence, obsession_gap)
    return metrics


class StatsAggregator:
    """Service for aggregating and calculating listening statistics."""

    def __init__(
        self,
        store: EventStore,
        clock: Callable[[], datetime] | None = None,
        settings: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the aggregator.

        Args:
            store: Event store to read from
            clock: Returns the current timezone-aware time
            settings: Optional "stats" settings section overrides
        """
        stats_settings = app_settings.section("stats", {"stats": settings} if settings else None)
        self.store = store
        self._clock = clock or utc_now
        self.top_limit = int(stats_settings.get("top_limit", TOP_LIMIT))
        self.obsession_gap = int(stats_settings.get("obsession_gap", OBSESSION_GAP))
        self.rediscovery_min_plays = int(
            stats_settings.get("rediscovery_min_plays", REDISCOVERY_MIN_PLAYS)
        )
        self.rediscovery_limit = int(stats_settings.get("rediscovery_limit", REDISCOVERY_LIMIT))

    def compute_snapshot(
        self,
        period: str | StatsPeriod,
        now: datetime | None = None,
    ) -> StatisticsSnapshot:
        """
        Compute the statistics snapshot for a period.

        Args:
            period: weekly, monthly, thisYear or allTime
            now: Reference time (defaults to the aggregator clock)

        Returns:
            StatisticsSnapshot; an empty window yields a zero-valued snapshot

        Raises:
            InvalidPeriodError: If the period is not recognised
        """
        period = parse_period(period)
        now = now or self._clock()

        earliest = self.store.earliest_event_time() if period is StatsPeriod.ALL_TIME else None
        window = resolve_window(period, now, earliest)

        if period is StatsPeriod.ALL_TIME and earliest is None:
            events: list[ListeningEvent] = []
        else:
            events = self.store.query_events_since(window.start)

        previous_events: list[ListeningEvent] = []
        if window.has_comparison:
            previous_events = self.store.query_events_since(
                window.previous_start, window.previous_end
            )

        tracks = {t.track_id: t for t in self.store.list_all_tracks()}

        current = collect_metrics(events, tracks, window.days, self.obsession_gap)
        previous = None
        if window.has_comparison:
            previous = collect_metrics(
                previous_events, tracks, window.previous_days, self.obsession_gap
            )

        rediscoveries: list[Rediscovery] = []
        if period is not StatsPeriod.ALL_TIME:
            history = self.store.query_events_before(window.start)
            rediscoveries = self._find_rediscoveries(history, current, tracks)

        snapshot = self._build_snapshot(period, window, current, previous, tracks, rediscoveries)
        logger.debug(
            f"Computed {period.value} snapshot: {snapshot.total_plays} plays, "
            f"{len(events)} events, {len(previous_events)} comparison events"
        )
        return snapshot

    def _describe(
        self,
        track_id: str,
        tracks: dict[str, TrackMetadata],
    ) -> tuple[str, str, str | None]:
        meta = tracks.get(track_id)
        if meta is None:
            return UNKNOWN_TITLE, UNKNOWN_ARTIST, None
        return meta.title, meta.artist, meta.artwork

    def _find_rediscoveries(
        self,
        history: list[ListeningEvent],
        current: RawMetrics,
        tracks: dict[str, TrackMetadata],
    ) -> list[Rediscovery]:
        counts: dict[str, int] = {}
        last_played: dict[str, datetime] = {}
        for event in history:
            if not event.is_play_count:
                continue
            counts[event.track_id] = counts.get(event.track_id, 0) + 1
            previous = last_played.get(event.track_id)
            if previous is None or event.timestamp > previous:
                last_played[event.track_id] = event.timestamp

        candidates = [
            (track_id, count)
            for track_id, count in counts.items()
            if count >= self.rediscovery_min_plays and current.track_plays.get(track_id, 0) == 0
        ]
        candidates.sort(key=lambda item: item[1], reverse=True)

        results = []
        for track_id, count in candidates[: self.rediscovery_limit]:
            title, artist, artwork = self._describe(track_id, tracks)
            results.append(
                Rediscovery(
                    track_id=track_id,
                    title=title,
                    artist=artist,
                    artwork=artwork,
                    historical_plays=count,
                    last_played=last_played.get(track_id),
                )
            )
        return results

    def _build_snapshot(
        self,
        period: StatsPeriod,
        window: StatsWindow,
        current: RawMetrics,
        previous: RawMetrics | None,
        tracks: dict[str, TrackMetadata],
        rediscoveries: list[Rediscovery],
    ) -> StatisticsSnapshot:
        # sorted() is stable, so equal counts keep first-played order
        ranked_tracks = sorted(current.track_plays.items(), key=lambda item: item[1], reverse=True)
        top_tracks = []
        for track_id, count in ranked_tracks:
            title, artist, artwork = self._describe(track_id, tracks)
            change = None
            if previous is not None:
                change = percent_change(count, previous.track_plays.get(track_id, 0))
            top_tracks.append(
                RankedTrack(
                    track_id=track_id,
                    title=title,
                    artist=artist,
                    artwork=artwork,
                    play_count=count,
                    change=change,
                )
            )

        ranked_artists = sorted(current.artist_plays.items(), key=lambda item: item[1], reverse=True)
        top_artists = [
            RankedArtist(
                name=name,
                play_count=count,
                listening_seconds=current.artist_seconds.get(name, 0.0),
                artwork=current.artist_artwork.get(name),
            )
            for name, count in ranked_artists[: self.top_limit]
        ]

        calendar = {
            day: CalendarDay(date=day, play_count=bucket.play_count, artworks=list(bucket.artworks))
            for day, bucket in sorted(current.calendar.items())
        }

        busiest_day = None
        for day, track_ids in sorted(current.day_tracks.items()):
            if busiest_day is None or len(track_ids) > busiest_day.track_count:
                busiest_day = BusiestDay(
                    date=day,
                    track_count=len(track_ids),
                    listening_seconds=current.day_seconds.get(day, 0.0),
                )

        max_repeats = None
        if current.max_repeats is not None:
            track_id, count = current.max_repeats
            title, artist, artwork = self._describe(track_id, tracks)
            max_repeats = RepeatRun(
                track_id=track_id, title=title, artist=artist, artwork=artwork, count=count
            )

        comparison = None
        if previous is not None:
            comparison = PeriodComparison(
                previous_start=window.previous_start,
                previous_end=window.previous_end,
                plays_change=percent_change(current.total_plays, previous.total_plays),
                listening_time_change=percent_change(current.total_seconds, previous.total_seconds),
                unique_tracks_change=percent_change(current.unique_tracks, previous.unique_tracks),
                unique_artists_change=percent_change(current.unique_artists, previous.unique_artists),
                average_daily_listening_change=percent_change(
                    current.average_daily_listening, previous.average_daily_listening
                ),
            )

        return StatisticsSnapshot(
            period=period.value,
            window_start=window.start,
            window_end=window.end,
            days_in_period=current.days,
            total_plays=current.total_plays,
            total_listening_seconds=current.total_seconds,
            total_listening_time=ListeningDuration.from_seconds(current.total_seconds),
            unique_tracks=current.unique_tracks,
            unique_artists=current.unique_artists,
            most_played_track=top_tracks[0] if top_tracks else None,
            top_tracks=top_tracks[: self.top_limit],
            top_artists=top_artists,
            hourly_activity=list(current.hourly),
            calendar=calendar,
            variety_score=round(current.variety_score, 1),
            obsession_rate=round(current.obsession_rate, 1),
            consistency_score=round(current.consistency_score, 1),
            average_track_length=math.floor(current.average_track_length + 0.5),
            average_daily_listening=round(current.average_daily_listening, 1),
            active_days=current.active_days,
            busiest_day=busiest_day,
            max_repeats=max_repeats,
            rediscoveries=rediscoveries,
            comparison=comparison,
        )


# Singleton instance
_aggregator: StatsAggregator | None = None


def get_stats_aggregator() -> StatsAggregator:
    """Get the singleton StatsAggregator instance."""
    global _aggregator
    if _aggregator is None:
        from soundstats.db.factory import get_event_store

        _aggregator = StatsAggregator(get_event_store())
    return _aggregator


def reset_stats_aggregator() -> None:
    """Drop the singleton so the next call rebinds to the current store."""
    global _aggregator
    _aggregator = None
