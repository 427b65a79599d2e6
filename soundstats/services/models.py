"""
Listening Statistics Models

Records shared by the event store, the ingestion service and the
aggregation engine.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any

UNKNOWN_TITLE = "Unknown Track"
UNKNOWN_ARTIST = "Unknown Artist"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TrackInfo:
    """Track descriptor handed over by the playback observer."""

    url: str
    title: str
    artist: str
    duration: float = 0
    artwork: str | None = None


@dataclass
class TrackMetadata:
    """Persisted track record, keyed by the track's canonical URL."""

    track_id: str
    title: str
    artist: str
    duration: float = 0
    artwork: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_track_info(cls, track: TrackInfo, now: datetime | None = None) -> TrackMetadata:
        now = now or utc_now()
        return cls(
            track_id=track.url,
            title=track.title,
            artist=track.artist,
            duration=track.duration or 0,
            artwork=track.artwork,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class ListeningEvent:
    """
    One append-only observation.

    A play-count event records that a track crossed the play threshold and
    always carries zero seconds. A time-accumulation event records seconds
    of continuous listening.
    """

    track_id: str
    timestamp: datetime
    listened_seconds: float = 0
    is_play_count: bool = False

    def __post_init__(self) -> None:
        if not math.isfinite(self.listened_seconds):
            raise ValueError("listened_seconds must be a finite number")
        if self.listened_seconds < 0:
            raise ValueError("listened_seconds must be non-negative")
        if self.is_play_count and self.listened_seconds != 0:
            raise ValueError("play-count events cannot carry listened seconds")
        if self.timestamp.tzinfo is None:
            raise ValueError("event timestamps must be timezone-aware")

    @classmethod
    def play(cls, track_id: str, timestamp: datetime) -> ListeningEvent:
        return cls(track_id=track_id, timestamp=timestamp, listened_seconds=0, is_play_count=True)

    @classmethod
    def listened(cls, track_id: str, timestamp: datetime, seconds: float) -> ListeningEvent:
        return cls(track_id=track_id, timestamp=timestamp, listened_seconds=seconds, is_play_count=False)


@dataclass
class ListeningDuration:
    hours: int
    minutes: int
    seconds: int

    @classmethod
    def from_seconds(cls, total_seconds: float) -> ListeningDuration:
        total = int(total_seconds)
        return cls(hours=total // 3600, minutes=(total % 3600) // 60, seconds=total % 60)


@dataclass
class RankedTrack:
    track_id: str
    title: str
    artist: str
    artwork: str | None
    play_count: int
    change: float | None = None


@dataclass
class RankedArtist:
    name: str
    play_count: int
    listening_seconds: float
    artwork: str | None = None


@dataclass
class CalendarDay:
    date: date
    play_count: int = 0
    artworks: list[str] = field(default_factory=list)


@dataclass
class BusiestDay:
    date: date
    track_count: int
    listening_seconds: float


@dataclass
class RepeatRun:
    track_id: str
    title: str
    artist: str
    artwork: str | None
    count: int


@dataclass
class Rediscovery:
    track_id: str
    title: str
    artist: str
    artwork: str | None
    historical_plays: int
    last_played: datetime | None = None


@dataclass
class PeriodComparison:
    """Percentage deltas against the preceding window of the same length."""

    previous_start: datetime
    previous_end: datetime
    plays_change: float
    listening_time_change: float
    unique_tracks_change: float
    unique_artists_change: float
    average_daily_listening_change: float


@dataclass
class StatisticsSnapshot:
    period: str
    window_start: datetime
    window_end: datetime
    days_in_period: int
    total_plays: int = 0
    total_listening_seconds: float = 0
    total_listening_time: ListeningDuration = field(
        default_factory=lambda: ListeningDuration(0, 0, 0)
    )
    unique_tracks: int = 0
    unique_artists: int = 0
    most_played_track: RankedTrack | None = None
    top_tracks: list[RankedTrack] = field(default_factory=list)
    top_artists: list[RankedArtist] = field(default_factory=list)
    hourly_activity: list[int] = field(default_factory=lambda: [0] * 24)
    calendar: dict[date, CalendarDay] = field(default_factory=dict)
    variety_score: float = 0
    obsession_rate: float = 0
    consistency_score: float = 0
    average_track_length: int = 0
    average_daily_listening: float = 0
    active_days: int = 0
    busiest_day: BusiestDay | None = None
    max_repeats: RepeatRun | None = None
    rediscoveries: list[Rediscovery] = field(default_factory=list)
    comparison: PeriodComparison | None = None
    generated_at: datetime = field(default_factory=utc_now)

    @property
    def is_empty(self) -> bool:
        return self.total_plays == 0 and self.total_listening_seconds == 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize the snapshot for JSON payloads."""
        return _jsonable(asdict(self))


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {_jsonable_key(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _jsonable_key(key: Any) -> str:
    if isinstance(key, (datetime, date)):
        return key.isoformat()
    return str(key)
