"""Tests for settings loading and store configuration."""

import json

import pytest

from soundstats import app_settings
from soundstats.db import factory
from soundstats.db.connection import PoolConfig
from soundstats.db.sqlite_store import SqliteEventStore
from soundstats.db.store import MemoryEventStore, StoreError


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(app_settings, "SETTINGS_PATH", tmp_path / "settings.json")
    for name in (
        "SOUNDSTATS_STORE",
        "SOUNDSTATS_SQLITE_PATH",
        "SOUNDSTATS_DATABASE_URL",
        "SOUNDSTATS_DB_POOL_MIN",
        "SOUNDSTATS_DB_POOL_MAX",
        "SOUNDSTATS_DB_POOL_TIMEOUT",
        "SOUNDSTATS_DB_POOL_MAX_IDLE",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_defaults_without_settings_file():
    settings = app_settings.load_settings()

    assert app_settings.store_backend(settings) == "sqlite"
    assert app_settings.section("stats", settings)["obsession_gap"] == 2
    assert app_settings.section("tracking", settings)["play_threshold"] == 0.5


def test_settings_file_is_deep_merged(isolated_settings):
    (isolated_settings / "settings.json").write_text(
        json.dumps({"stats": {"top_limit": 3}, "store": {"pool": {"max_size": 9}}})
    )

    settings = app_settings.load_settings()

    assert settings["stats"]["top_limit"] == 3
    assert settings["stats"]["rediscovery_limit"] == 5
    assert settings["store"]["pool"]["max_size"] == 9
    assert settings["store"]["pool"]["min_size"] == 1


def test_update_settings_persists(isolated_settings):
    app_settings.update_settings({"tracking": {"play_threshold": 0.8}})

    saved = json.loads((isolated_settings / "settings.json").read_text())
    assert saved["tracking"]["play_threshold"] == 0.8
    assert app_settings.section("tracking")["max_poll_gap_seconds"] == 10.0


def test_environment_overrides_win(isolated_settings, monkeypatch):
    (isolated_settings / "settings.json").write_text(json.dumps({"store": {"backend": "postgres"}}))
    monkeypatch.setenv("SOUNDSTATS_STORE", "memory")
    monkeypatch.setenv("SOUNDSTATS_DB_POOL_MAX", "12")

    settings = app_settings.load_settings()

    assert app_settings.store_backend(settings) == "memory"
    assert settings["store"]["pool"]["max_size"] == "12"


def test_unknown_backend_is_rejected(monkeypatch):
    monkeypatch.setenv("SOUNDSTATS_STORE", "mongo")

    with pytest.raises(ValueError):
        app_settings.store_backend()


def test_pool_config_reads_store_section(monkeypatch):
    monkeypatch.setenv("SOUNDSTATS_DATABASE_URL", "postgresql://localhost/listening")
    monkeypatch.setenv("SOUNDSTATS_DB_POOL_MAX", "12")
    monkeypatch.setenv("SOUNDSTATS_DB_POOL_TIMEOUT", "2.5")

    config = PoolConfig.from_settings()

    assert config.database_url == "postgresql://localhost/listening"
    assert config.max_size == 12
    assert config.min_size == 1
    assert config.timeout == 2.5


def test_pool_config_requires_database_url():
    with pytest.raises(StoreError):
        PoolConfig.from_settings()


def test_factory_builds_configured_backend(tmp_path):
    memory = factory.create_event_store({"store": {"backend": "memory"}})
    assert isinstance(memory, MemoryEventStore)

    sqlite_store = factory.create_event_store(
        {"store": {"backend": "sqlite", "sqlite_path": str(tmp_path / "a" / "h.sqlite3")}}
    )
    try:
        assert isinstance(sqlite_store, SqliteEventStore)
        assert (tmp_path / "a" / "h.sqlite3").exists()
    finally:
        sqlite_store.close()
