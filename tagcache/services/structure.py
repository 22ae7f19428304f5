"""Schema management: build, version and verify the cache structure."""

import sqlite3

from sqlalchemy import exc as sa_exc
from sqlmodel import SQLModel

from tagcache.constants import DROP_STATEMENTS, SCHEMA_VERSION
from tagcache.core.exceptions import StructureBuildFailed
from tagcache.core.logging import get_logger
from tagcache.models.cache import CACHE_TABLES
from .executor import QueryExecutor, escalated_errors

logger = get_logger(__name__)


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class StructureManager:
    """Keeps the on-disk schema at ``SCHEMA_VERSION``.

    Every check here goes through ``QueryExecutor.probe`` so that a missing
    table reads as "not built yet" instead of kicking off a repair.
    """

    def __init__(self, executor: QueryExecutor):
        self.executor = executor
        self.engine = executor.engine
        self._checked = False

    @property
    def checked(self) -> bool:
        return self._checked

    def ensure(self) -> bool:
        """Check the structure once per store lifetime, building it if needed.

        Raises:
            StructureBuildFailed: if the version marker is wrong after a rebuild
        """
        if self._checked:
            return True
        if not self.is_valid():
            self.build()
            if not self.is_valid():
                raise StructureBuildFailed(self.engine.db_path)
        self._checked = True
        return True

    def invalidate(self) -> None:
        """Forget the cached check so the next ``ensure()`` probes again."""
        self._checked = False

    def is_valid(self) -> bool:
        """Whether the version marker exists and holds the expected revision."""
        res = self.executor.probe("SELECT num FROM version")
        if not res:
            return False
        row = res.first()
        if row is None:
            return False
        if int(row["num"]) != SCHEMA_VERSION:
            logger.warning("Old cache structure version detected, the cache is going to be dropped",
                           found=row["num"], expected=SCHEMA_VERSION)
            return False
        return True

    def build(self) -> bool:
        """Drop every schema object and create the structure from scratch."""
        logger.info("Building cache structure", path=str(self.engine.db_path))
        for statement in DROP_STATEMENTS:
            self.executor.probe(statement)

        try:
            conn = self.engine.connection()
            with escalated_errors():
                SQLModel.metadata.create_all(conn, tables=CACHE_TABLES, checkfirst=False)
        except (sa_exc.SQLAlchemyError, sqlite3.Error, Warning) as e:
            self.engine.last_error = e
            logger.error("Failed to create cache structure",
                         path=str(self.engine.db_path), error=str(e))
            return False

        return bool(self.executor.probe("INSERT INTO version (num) VALUES (?)", SCHEMA_VERSION))

    # =========================================================================
    # SHAPE CHECKS
    # =========================================================================

    def integrity_ok(self) -> bool:
        res = self.executor.probe("PRAGMA integrity_check")
        if not res:
            return False
        return res.scalar() == "ok"

    def has_table(self, table: str, columns) -> bool:
        """Whether ``table`` exists and has at least ``columns``."""
        if not self._has_object("table", table):
            return False
        res = self.executor.probe(f"PRAGMA table_info({_quote_identifier(table)})")
        if not res:
            return False
        missing = set(columns) - set(res.column("name"))
        return not missing

    def has_index(self, index: str) -> bool:
        return self._has_object("index", index)

    def _has_object(self, kind: str, name: str) -> bool:
        res = self.executor.probe(
            "SELECT type, name FROM sqlite_master WHERE type=? AND name=?", kind, name
        )
        if not res:
            return False
        row = res.first()
        return row is not None and row["type"] == kind and row["name"] == name
