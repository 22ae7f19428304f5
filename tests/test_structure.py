"""Schema build, version checks and self-repair."""

import pytest
from structlog.testing import capture_logs

from tagcache import (
    CacheStore,
    ConnectionFailed,
    RepairExhausted,
    StructureBuildFailed,
    load_settings,
)
from tagcache.services.repair import RepairOutcome
from conftest import query_raw, run_raw


def _events(logs, name):
    return [entry for entry in logs if entry["event"] == name]


def test_structure_built_once(store):
    with capture_logs() as logs:
        assert store.structure.ensure()
        assert store.structure.ensure()

    assert len(_events(logs, "Building cache structure")) == 1
    assert store.structure.checked


def test_existing_structure_is_not_rebuilt(settings, clock, store):
    store.save(b"data", "key")

    with capture_logs() as logs:
        with CacheStore(settings, clock=clock) as other:
            assert other.structure.ensure()
            assert other.load("key") == b"data"

    assert _events(logs, "Building cache structure") == []


def test_schema_matches_fixed_layout(store, db_path):
    store.structure.ensure()

    objects = {(kind, name) for kind, name in query_raw(
        db_path, "SELECT type, name FROM sqlite_master WHERE name NOT LIKE 'sqlite_%'"
    )}
    assert objects == {
        ("table", "version"),
        ("table", "cache"),
        ("table", "tag"),
        ("index", "tag_id_index"),
        ("index", "tag_name_index"),
        ("index", "cache_id_expire_index"),
    }
    assert query_raw(db_path, "SELECT num FROM version") == [(1,)]
    assert [row[1] for row in query_raw(db_path, "PRAGMA table_info(cache)")] == [
        "id", "content", "lastModified", "expire"
    ]


def test_old_version_is_dropped(settings, clock, db_path):
    run_raw(
        db_path,
        "CREATE TABLE version (num INTEGER PRIMARY KEY)",
        "INSERT INTO version (num) VALUES (2)",
        "CREATE TABLE cache (id TEXT PRIMARY KEY, content BLOB, lastModified INTEGER, expire INTEGER)",
        "INSERT INTO cache VALUES ('old', x'00', 0, 0)",
    )

    with capture_logs() as logs:
        with CacheStore(settings, clock=clock) as cache:
            assert cache.load("old") is None

    assert len(_events(logs, "Old cache structure version detected, the cache is going to be dropped")) == 1
    assert query_raw(db_path, "SELECT num FROM version") == [(1,)]
    assert query_raw(db_path, "SELECT COUNT(*) FROM cache") == [(0,)]


def test_build_failure_is_fatal(store, monkeypatch):
    monkeypatch.setattr(store.structure, "build", lambda: False)

    with pytest.raises(StructureBuildFailed):
        store.load("key")


def test_dropped_tables_trigger_one_repair(store, db_path):
    store.save(b"data", "key", ["x"])
    run_raw(db_path, "DROP TABLE cache")

    with capture_logs() as logs:
        assert store.load("key") is None
        assert store.save(b"fresh", "other", ["y"])

    assert len(_events(logs, "Cache structure repaired")) == 1
    assert len(_events(logs, "Query failed, retrying")) == 1
    assert _events(logs, "Query failed, giving up") == []
    assert store.repair.last_outcome is RepairOutcome.REBUILT
    assert store.load("other") == b"fresh"
    assert store.get_tags() == ["y"]


def test_dropped_index_is_rebuilt(store, db_path):
    store.save(b"data", "key")
    run_raw(db_path, "DROP INDEX tag_name_index")

    assert "index:tag_name_index" in store.repair.diagnose()
    assert store.repair.repair() is RepairOutcome.REBUILT
    assert store.repair.diagnose() == []


def test_healthy_store_needs_no_repair(store):
    store.structure.ensure()

    assert store.repair.diagnose() == []
    assert store.repair.repair() is RepairOutcome.HEALTHY


def test_garbage_file_is_replaced(settings, clock, db_path):
    db_path.write_bytes(b"this is definitely not an sqlite database" * 200)

    with capture_logs() as logs:
        with CacheStore(settings, clock=clock) as cache:
            assert cache.save(b"data", "key")
            assert cache.load("key") == b"data"

    assert len(_events(logs, "Cache DB file unopenable, deleting it")) == 1
    assert db_path.read_bytes().startswith(b"SQLite format 3")


def test_unopenable_path_is_fatal(tmp_path, clock):
    directory = tmp_path / "gone"
    settings = load_settings(cache_db_complete_path=directory / "cache.db")
    directory.rmdir()

    cache = CacheStore(settings, clock=clock)
    with pytest.raises(ConnectionFailed):
        cache.load("key")


def test_repair_recreates_file_when_rebuild_does_not_stick(store, db_path, monkeypatch):
    store.save(b"data", "key")
    build = store.structure.build
    attempts = []

    def flaky_build():
        attempts.append(1)
        # The first rebuild silently does nothing
        return build() if len(attempts) > 1 else False

    monkeypatch.setattr(store.structure, "build", flaky_build)
    run_raw(db_path, "DROP TABLE version", "DROP TABLE cache")

    assert store.load("key") is None
    assert store.repair.last_outcome is RepairOutcome.RECREATED
    assert len(attempts) == 2
    assert store.save(b"again", "key")
    assert store.load("key") == b"again"


def test_repair_exhausted(store, db_path, monkeypatch):
    store.save(b"data", "key")
    monkeypatch.setattr(store.structure, "build", lambda: False)
    run_raw(db_path, "DROP TABLE version", "DROP TABLE cache")

    with pytest.raises(RepairExhausted):
        store.load("key")


def test_failure_inside_save_rolls_back_and_repairs(store, db_path):
    store.save(b"old", "other")
    run_raw(db_path, "DROP TABLE tag")

    with capture_logs() as logs:
        assert store.save(b"new", "key", ["t"]) is False

    assert len(_events(logs, "Query failed inside a transaction, rolled back")) == 1
    assert _events(logs, "Query failed, retrying") == []
    assert not store.engine.in_transaction()
    assert store.repair.last_outcome is RepairOutcome.REBUILT
    assert store.load("key") is None
    assert store.get_tags() == []

    assert store.save(b"new", "key", ["t"])
    assert store.load("key") == b"new"
    assert store.get_ids_matching_tags("t") == ["key"]
