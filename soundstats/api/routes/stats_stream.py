"""
Real-Time Statistics Streaming

WebSocket and Server-Sent Events endpoints that tell the presentation layer
when statistics changed. Messages carry no statistics; clients re-query the
snapshot endpoint.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from soundstats.api.events.stats_events import StatsSubscription, get_stats_change_hub

router = APIRouter()
logger = logging.getLogger(__name__)

PING_INTERVAL_SECONDS = 30.0


async def _pump_changes(websocket: WebSocket, subscription: StatsSubscription) -> None:
    """Forward stats changes to one client, pinging when idle."""
    idle = 0.0
    while not subscription.closed:
        change = await asyncio.to_thread(subscription.wait, 1.0)
        if change is None:
            idle += 1.0
            if idle >= PING_INTERVAL_SECONDS:
                idle = 0.0
                await websocket.send_json({
                    "type": "ping",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            continue
        idle = 0.0
        await websocket.send_json(change.to_message())


async def _receive_messages(websocket: WebSocket) -> None:
    """Answer client pings until the client disconnects."""
    while True:
        data = await websocket.receive_text()
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            continue
        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@router.websocket("/live")
async def stats_live(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for stats change notifications.

    Sends:
    - ``initial`` on connect
    - ``stats_updated`` after ingestions, one message per burst
    - ``ping`` when idle
    """
    await websocket.accept()
    hub = get_stats_change_hub()
    subscription = hub.subscribe()

    tasks: set[asyncio.Task] = set()
    try:
        await websocket.send_json({
            "type": "initial",
            "version": hub.version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        tasks = {
            asyncio.create_task(_pump_changes(websocket, subscription)),
            asyncio.create_task(_receive_messages(websocket)),
        }
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        for task in tasks:
            task.cancel()
        hub.unsubscribe(subscription)


@router.get("/events")
async def stats_event_stream() -> StreamingResponse:
    """Stream stats change notifications via Server-Sent Events."""
    hub = get_stats_change_hub()
    subscription = hub.subscribe()

    async def event_generator():
        try:
            while not subscription.closed:
                change = await asyncio.to_thread(subscription.wait, 0.5)
                if change is None:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(change.to_message())}\n\n"
        finally:
            hub.unsubscribe(subscription)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/clients")
async def get_connected_clients() -> dict[str, int]:
    """Get the number of connected stream subscribers."""
    return {"connected_clients": get_stats_change_hub().subscriber_count}
