"""
Statistics API Routes

Endpoints for retrieving listening statistics snapshots.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from soundstats.services.stats_aggregator import (
    InvalidPeriodError,
    StatsPeriod,
    format_duration,
    get_stats_aggregator,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/periods")
async def get_periods() -> dict[str, Any]:
    """List the supported statistics periods."""
    return {"periods": [p.value for p in StatsPeriod]}


@router.get("/snapshot")
async def get_snapshot(
    period: str = Query("weekly", description="Time period: weekly, monthly, thisYear, allTime"),
) -> dict[str, Any]:
    """
    Get the full statistics snapshot for a period.

    An empty period returns a zero-valued snapshot with ``empty`` set, which
    is distinct from the 500 returned when statistics cannot be loaded.
    """
    aggregator = get_stats_aggregator()

    try:
        snapshot = aggregator.compute_snapshot(period)
    except InvalidPeriodError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Failed to compute statistics snapshot")
        raise HTTPException(status_code=500, detail=f"Couldn't load statistics: {e}")

    payload = snapshot.to_dict()
    payload["empty"] = snapshot.is_empty
    payload["total_listening_time_formatted"] = format_duration(snapshot.total_listening_seconds)
    return payload
