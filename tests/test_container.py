"""Dependency container wiring."""

import logging

import structlog
from dependency_injector import providers

from tagcache import CacheStore, load_settings
from tagcache.core.container import Container


def test_container_provides_one_store(db_path):
    container = Container()
    container.settings.override(
        providers.Object(load_settings(cache_db_complete_path=db_path, automatic_vacuum_factor=0))
    )

    store = container.store()
    try:
        assert isinstance(store, CacheStore)
        assert container.store() is store
        assert store.save(b"data", "key")
        assert store.load("key") == b"data"
    finally:
        store.close()
        container.settings.reset_override()


def test_container_reads_environment(monkeypatch, db_path):
    monkeypatch.setenv("TAGCACHE_CACHE_DB_COMPLETE_PATH", str(db_path))

    container = Container()
    store = container.store()
    try:
        assert store.settings.cache_db_complete_path == db_path
    finally:
        store.close()


def test_init_resources_configures_logging(monkeypatch, db_path):
    configured = {}
    monkeypatch.setattr(structlog, "configure", lambda **kwargs: configured.update(kwargs))
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: configured.update(handlers=kwargs["handlers"]))

    container = Container()
    container.settings.override(
        providers.Object(load_settings(cache_db_complete_path=db_path, log_format="json"))
    )
    try:
        container.init_resources()
        assert isinstance(configured["processors"][-1], structlog.processors.JSONRenderer)
        assert len(configured["handlers"]) == 1
    finally:
        container.shutdown_resources()
        container.settings.reset_override()
