from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = Path(
    os.environ.get("SOUNDSTATS_DATA_DIR", REPO_ROOT / ".soundstats")
)
SETTINGS_PATH = DEFAULT_DATA_DIR / "settings.json"

STORE_BACKENDS = ("sqlite", "postgres", "memory")
_POOL_ENV = {
    "min_size": "SOUNDSTATS_DB_POOL_MIN",
    "max_size": "SOUNDSTATS_DB_POOL_MAX",
    "timeout": "SOUNDSTATS_DB_POOL_TIMEOUT",
    "max_idle": "SOUNDSTATS_DB_POOL_MAX_IDLE",
}


def _default_settings() -> dict[str, Any]:
    return {
        "store": {
            "backend": "sqlite",
            "sqlite_path": str(DEFAULT_DATA_DIR / "listening_history.sqlite3"),
            "database_url": None,
            "pool": {
                "min_size": 1,
                "max_size": 5,
                "timeout": 30.0,
                "max_idle": 300.0,
            },
        },
        "stats": {
            "top_limit": 10,
            "rediscovery_min_plays": 5,
            "rediscovery_limit": 5,
            "obsession_gap": 2,
        },
        "tracking": {
            "play_threshold": 0.5,
            "max_poll_gap_seconds": 10.0,
        },
    }


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _deep_merge(base[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(settings: dict[str, Any]) -> dict[str, Any]:
    backend = os.environ.get("SOUNDSTATS_STORE")
    if backend:
        settings = _deep_merge(settings, {"store": {"backend": backend}})
    sqlite_path = os.environ.get("SOUNDSTATS_SQLITE_PATH")
    if sqlite_path:
        settings = _deep_merge(settings, {"store": {"sqlite_path": sqlite_path}})
    database_url = os.environ.get("SOUNDSTATS_DATABASE_URL")
    if database_url:
        settings = _deep_merge(settings, {"store": {"database_url": database_url}})
    pool: dict[str, Any] = {}
    for key, env_name in _POOL_ENV.items():
        value = os.environ.get(env_name)
        if value:
            pool[key] = value
    if pool:
        settings = _deep_merge(settings, {"store": {"pool": pool}})
    return settings


def load_settings() -> dict[str, Any]:
    defaults = _default_settings()
    if not SETTINGS_PATH.exists():
        return _apply_env_overrides(defaults)
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return _apply_env_overrides(defaults)
    if not isinstance(data, dict):
        return _apply_env_overrides(defaults)
    return _apply_env_overrides(_deep_merge(defaults, data))


def update_settings(patch: dict[str, Any]) -> dict[str, Any]:
    current = load_settings()
    updated = _deep_merge(current, patch)
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(updated, indent=2, sort_keys=True, ensure_ascii=True) + "\n",
        encoding="utf-8",
    )
    return updated


def store_backend(settings: dict[str, Any] | None = None) -> str:
    settings = settings or load_settings()
    store = settings.get("store") if isinstance(settings, dict) else {}
    if not isinstance(store, dict):
        store = {}
    backend = str(store.get("backend") or "sqlite").lower()
    if backend not in STORE_BACKENDS:
        raise ValueError(
            f"Unknown store backend {backend!r}. Expected one of: {', '.join(STORE_BACKENDS)}"
        )
    return backend


def resolve_sqlite_path(settings: dict[str, Any] | None = None) -> Path:
    settings = settings or load_settings()
    store = settings.get("store") if isinstance(settings, dict) else {}
    if not isinstance(store, dict):
        store = {}
    path = store.get("sqlite_path")
    return Path(path or DEFAULT_DATA_DIR / "listening_history.sqlite3").expanduser()


def section(name: str, settings: dict[str, Any] | None = None) -> dict[str, Any]:
    settings = settings or load_settings()
    value = settings.get(name) if isinstance(settings, dict) else None
    defaults = _default_settings().get(name, {})
    if not isinstance(value, dict):
        return dict(defaults)
    return _deep_merge(defaults, value)
