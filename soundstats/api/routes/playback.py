"""
Playback Tracking API Routes

Endpoints the playback observer calls to log plays and listened time.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from soundstats.services.listening_stats import get_listening_stats_service
from soundstats.services.models import TrackInfo
from soundstats.services.playback_tracker import get_playback_tracker

router = APIRouter()
logger = logging.getLogger(__name__)


class TrackPayload(BaseModel):
    url: str = Field(..., min_length=1)
    title: str
    artist: str
    duration: float = Field(0, ge=0, allow_inf_nan=False)
    artwork: str | None = None

    def to_track_info(self) -> TrackInfo:
        return TrackInfo(
            url=self.url,
            title=self.title,
            artist=self.artist,
            duration=self.duration,
            artwork=self.artwork,
        )


class ListenedTimeRequest(BaseModel):
    track: TrackPayload
    seconds: float = Field(..., allow_inf_nan=False)


class ProgressRequest(BaseModel):
    track: TrackPayload | None = None
    is_playing: bool


class AutomationRequest(BaseModel):
    paused: bool


@router.post("/play")
async def log_play(payload: TrackPayload) -> dict[str, Any]:
    """
    Log a counted play.

    Called once a track crosses the play threshold.
    """
    service = get_listening_stats_service()

    try:
        service.log_play(payload.to_track_info())
        return {"success": True}
    except Exception as e:
        logger.exception("Failed to log play")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/time")
async def log_listened_time(payload: ListenedTimeRequest) -> dict[str, Any]:
    """
    Log listened seconds.

    Called on pause or track change with the accumulated seconds.
    """
    service = get_listening_stats_service()

    try:
        logged = service.log_listened_time(payload.track.to_track_info(), payload.seconds)
        return {"success": True, "logged": logged}
    except Exception as e:
        logger.exception("Failed to log listened time")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/progress")
async def report_progress(payload: ProgressRequest) -> dict[str, Any]:
    """
    Feed a player progress update to the playback tracker.

    The tracker derives plays and listened time on its own.
    """
    tracker = get_playback_tracker()
    track = payload.track.to_track_info() if payload.track else None
    tracker.update(track, payload.is_playing)
    return tracker.get_state()


@router.post("/flush")
async def flush_session() -> dict[str, Any]:
    """Write any pending listened seconds of the current session."""
    tracker = get_playback_tracker()
    tracker.flush()
    return tracker.get_state()


@router.post("/automation")
async def set_automation(payload: AutomationRequest) -> dict[str, Any]:
    """Pause or resume tracking while automated playback runs."""
    tracker = get_playback_tracker()
    if payload.paused:
        tracker.flush()
    tracker.paused_for_automation = payload.paused
    return tracker.get_state()


@router.get("/state")
async def get_state() -> dict[str, Any]:
    """Get the playback tracker's current session."""
    return get_playback_tracker().get_state()
