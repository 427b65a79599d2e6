"""
Postgres Connection Pool

Lazily created psycopg pool for the server-backed listening store. Pool
sizing and the database URL come from the "store" settings section, with
SOUNDSTATS_DATABASE_URL and SOUNDSTATS_DB_POOL_* taking precedence.
"""

from __future__ import annotations

import atexit
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

import psycopg
from psycopg_pool import ConnectionPool

from soundstats import app_settings
from soundstats.db.store import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolConfig:
    database_url: str
    min_size: int = 1
    max_size: int = 5
    timeout: float = 30.0
    max_idle: float = 300.0

    @classmethod
    def from_settings(cls, settings: dict[str, Any] | None = None) -> "PoolConfig":
        store = app_settings.section("store", settings)
        url = store.get("database_url")
        if not url:
            raise StoreError(
                "No Postgres database configured; set SOUNDSTATS_DATABASE_URL "
                "or store.database_url in settings.json"
            )
        pool = store.get("pool") or {}
        return cls(
            database_url=str(url),
            min_size=int(pool.get("min_size", cls.min_size)),
            max_size=int(pool.get("max_size", cls.max_size)),
            timeout=float(pool.get("timeout", cls.timeout)),
            max_idle=float(pool.get("max_idle", cls.max_idle)),
        )


# Global pool instance (lazy initialized)
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _configure_connection(conn: psycopg.Connection) -> None:
    # Listening timestamps are TIMESTAMPTZ; read them back as UTC
    conn.execute("SET TIME ZONE 'UTC'")
    conn.commit()


def _create_pool(config: PoolConfig) -> ConnectionPool:
    pool = ConnectionPool(
        conninfo=config.database_url,
        min_size=config.min_size,
        max_size=config.max_size,
        timeout=config.timeout,
        max_idle=config.max_idle,
        configure=_configure_connection,
        open=True,
        check=ConnectionPool.check_connection,
    )
    logger.info(
        f"Listening store pool ready (min={config.min_size}, max={config.max_size})"
    )
    return pool


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is not None:
        return _pool

    with _pool_lock:
        if _pool is None:
            _pool = _create_pool(PoolConfig.from_settings())
        return _pool


def close_pool() -> None:
    """Close the connection pool. Called at shutdown."""
    global _pool
    with _pool_lock:
        if _pool is None:
            return
        try:
            _pool.close()
            logger.info("Listening store pool closed")
        except psycopg.Error as e:
            logger.warning(f"Error closing listening store pool: {e}")
        _pool = None


atexit.register(close_pool)


@contextmanager
def get_connection() -> Iterator[psycopg.Connection]:
    """Borrow a pooled connection; it goes back to the pool on exit."""
    with _get_pool().connection() as conn:
        yield conn


@contextmanager
def transaction(action: str = "query") -> Iterator[psycopg.Cursor]:
    """
    Run statements in one transaction on a pooled connection.

    Commits when the block succeeds and rolls back otherwise. Driver errors
    surface as StoreError so callers only deal with one error type.

    Args:
        action: Short label used in the error message

    Yields:
        A cursor bound to the transaction
    """
    try:
        with get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    yield cur
    except psycopg.Error as exc:
        raise StoreError(f"Postgres {action} failed: {exc}") from exc


def get_pool_stats() -> dict:
    """Get connection pool statistics for the health endpoint."""
    pool = _get_pool()
    stats = pool.get_stats()
    return {
        "pool_size": stats.get("pool_size", 0),
        "pool_available": stats.get("pool_available", 0),
        "requests_waiting": stats.get("requests_waiting", 0),
        "pool_min": pool.min_size,
        "pool_max": pool.max_size,
    }
