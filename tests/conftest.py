import sqlite3
from pathlib import Path
from typing import Iterable, List, Tuple

import pytest

from tagcache import CacheStore, load_settings


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class ScriptedRandom:
    """Stands in for ``random.Random``; ``randint`` returns scripted draws."""

    def __init__(self, draws: Iterable[int]):
        self._draws = list(draws)
        self.calls: List[Tuple[int, int]] = []

    def randint(self, a: int, b: int) -> int:
        self.calls.append((a, b))
        return self._draws.pop(0)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in ("TAGCACHE_CACHE_DB_COMPLETE_PATH", "TAGCACHE_AUTOMATIC_VACUUM_FACTOR",
                 "TAGCACHE_BUSY_TIMEOUT", "TAGCACHE_TURBO_BOOST", "TAGCACHE_DEFAULT_LIFETIME"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cache.db"


@pytest.fixture
def settings(db_path: Path):
    # Vacuum disabled so tests stay deterministic unless they opt in
    return load_settings(cache_db_complete_path=db_path, automatic_vacuum_factor=0)


@pytest.fixture
def store(settings, clock):
    cache = CacheStore(settings, clock=clock)
    yield cache
    cache.close()


@pytest.fixture
def tagged_store(store):
    """Records A{x,y}, B{y,z}, C{z} with infinite lifetime."""
    store.save(b"a", "A", ["x", "y"], lifetime=None)
    store.save(b"b", "B", ["y", "z"], lifetime=None)
    store.save(b"c", "C", ["z"], lifetime=None)
    return store


def run_raw(path: Path, *statements: str) -> None:
    """Run statements through a separate connection, as another process would."""
    conn = sqlite3.connect(str(path))
    try:
        for statement in statements:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def query_raw(path: Path, sql: str) -> list:
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()
