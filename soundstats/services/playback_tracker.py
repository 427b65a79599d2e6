"""
Playback Tracker Service

Turns periodic player progress updates into play-count and listened-time
observations.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from soundstats import app_settings
from soundstats.services.listening_stats import ListeningStatsService
from soundstats.services.models import TrackInfo

logger = logging.getLogger(__name__)

# Play threshold: fraction of the nominal duration that counts as a play
PLAY_THRESHOLD = 0.5
# Progress updates further apart than this are treated as suspend/sleep gaps
MAX_POLL_GAP_SECONDS = 10.0


@dataclass
class TrackSession:
    """Listening state of the track currently in the player."""

    track: TrackInfo
    last_update: float
    total_listened: float = 0.0
    accumulated: float = 0.0
    logged_play: bool = False


class PlaybackTracker:
    """Service for tracking playback progress of the current track."""

    def __init__(
        self,
        service: ListeningStatsService,
        play_threshold: float | None = None,
        max_poll_gap: float | None = None,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            service: Ingestion service receiving the observations
            play_threshold: Fraction of duration that counts as a play
            max_poll_gap: Largest update interval still counted as listening
        """
        tracking = app_settings.section("tracking")
        self.service = service
        self.play_threshold = (
            play_threshold
            if play_threshold is not None
            else float(tracking.get("play_threshold", PLAY_THRESHOLD))
        )
        self.max_poll_gap = (
            max_poll_gap
            if max_poll_gap is not None
            else float(tracking.get("max_poll_gap_seconds", MAX_POLL_GAP_SECONDS))
        )
        self.session: TrackSession | None = None
        self.paused_for_automation = False

    def update(
        self,
        track: TrackInfo | None,
        is_playing: bool,
        now: float | None = None,
    ) -> None:
        """
        Feed one progress update from the player.

        Args:
            track: Track in the player, or None when nothing is loaded
            is_playing: Whether playback is running
            now: Monotonic time of the update in seconds
        """
        if self.paused_for_automation:
            return

        now = time.monotonic() if now is None else now

        if not is_playing or track is None:
            self.flush()
            if self.session is not None:
                self.session.last_update = now
            return

        if self.session is None or self.session.track.url != track.url:
            self.flush()
            self.session = TrackSession(track=track, last_update=now)
            logger.debug(f"New track session: {track.artist} - {track.title}")
            return

        session = self.session
        delta = now - session.last_update
        session.last_update = now
        if not 0 < delta < self.max_poll_gap:
            return

        session.accumulated += delta
        session.total_listened += delta

        duration = track.duration or session.track.duration
        if (
            not session.logged_play
            and duration > 0
            and session.total_listened >= duration * self.play_threshold
        ):
            session.logged_play = True
            self._safe_log(self.service.log_play, session.track)

    def flush(self) -> None:
        """Write the current session's accumulated seconds, if any."""
        session = self.session
        if session is None or session.accumulated <= 0:
            return
        seconds = session.accumulated
        session.accumulated = 0.0
        self._safe_log(self.service.log_listened_time, session.track, seconds)

    def _safe_log(self, method: Any, *args: Any) -> None:
        # Best effort: a failed write drops the measurement, playback goes on
        try:
            method(*args)
        except Exception as e:
            logger.warning(f"Dropped listening measurement ({method.__name__}): {e}")

    def get_state(self) -> dict[str, Any]:
        session = self.session
        if session is None:
            return {"track": None, "paused_for_automation": self.paused_for_automation}
        return {
            "track": session.track.url,
            "title": session.track.title,
            "artist": session.track.artist,
            "total_listened": round(session.total_listened, 1),
            "pending_seconds": round(session.accumulated, 1),
            "logged_play": session.logged_play,
            "paused_for_automation": self.paused_for_automation,
        }


# Singleton instance
_tracker: PlaybackTracker | None = None


def get_playback_tracker() -> PlaybackTracker:
    """Get the singleton PlaybackTracker instance."""
    global _tracker
    if _tracker is None:
        from soundstats.services.listening_stats import get_listening_stats_service

        _tracker = PlaybackTracker(get_listening_stats_service())
    return _tracker


def reset_playback_tracker() -> None:
    global _tracker
    _tracker = None
