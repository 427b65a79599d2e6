from __future__ import annotations

import logging
import threading
from typing import Any

from soundstats import app_settings
from soundstats.db.store import EventStore, MemoryEventStore

logger = logging.getLogger(__name__)


def create_event_store(settings: dict[str, Any] | None = None) -> EventStore:
    """
    Build the event store selected by configuration.

    Args:
        settings: Settings dict (defaults to ``app_settings.load_settings()``)

    Returns:
        A ready-to-use EventStore
    """
    settings = settings or app_settings.load_settings()
    backend = app_settings.store_backend(settings)

    if backend == "memory":
        store: EventStore = MemoryEventStore()
    elif backend == "postgres":
        from soundstats.db.postgres_store import PostgresEventStore

        store = PostgresEventStore()
    else:
        from soundstats.db.sqlite_store import SqliteEventStore

        store = SqliteEventStore(app_settings.resolve_sqlite_path(settings))

    logger.info(f"Using {store.name} listening store")
    return store


# Singleton instance
_store: EventStore | None = None
_store_lock = threading.Lock()


def get_event_store() -> EventStore:
    """Get the singleton EventStore instance."""
    global _store
    if _store is not None:
        return _store
    with _store_lock:
        if _store is None:
            _store = create_event_store()
        return _store


def set_event_store(store: EventStore | None) -> None:
    """Replace the singleton store (used at startup and by tests)."""
    global _store
    with _store_lock:
        _store = store


def close_event_store() -> None:
    """Close and forget the singleton store."""
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
            _store = None
