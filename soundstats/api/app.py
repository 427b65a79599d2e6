from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from soundstats.api.events.stats_events import notify_stats_changed
from soundstats.api.routes import playback, stats, stats_stream
from soundstats.db import factory
from soundstats.db.postgres_store import PostgresEventStore
from soundstats.services.listening_stats import get_listening_stats_service
from soundstats.services.playback_tracker import get_playback_tracker

app = FastAPI(
    title="SoundStats API",
    description="Listening statistics for the desktop player",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(playback.router, prefix="/api/play", tags=["playback"])
app.include_router(stats.router, prefix="/api/stats", tags=["stats"])
app.include_router(stats_stream.router, prefix="/api/stats/stream", tags=["stats-stream"])


@app.on_event("startup")
async def register_stats_notifications() -> None:
    """Forward every successful ingestion to the stream hub."""
    get_listening_stats_service().subscribe(notify_stats_changed)


@app.on_event("shutdown")
async def flush_and_close_store() -> None:
    """Write pending listened time, then close the store."""
    get_playback_tracker().flush()
    get_listening_stats_service().unsubscribe(notify_stats_changed)
    factory.close_event_store()


@app.get("/")
async def root():
    return {"message": "SoundStats API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check with store backend and, for Postgres, pool stats."""
    try:
        store = factory.get_event_store()
        store.earliest_event_time()
        payload = {"status": "healthy", "store": store.name}
        if isinstance(store, PostgresEventStore):
            payload["pool"] = store.pool_stats()
        return payload
    except Exception as e:
        return {
            "status": "degraded",
            "error": str(e),
        }
