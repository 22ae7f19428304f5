"""SQLite storage engine: the single connection handle of a cache store.

The connection runs in driver autocommit mode. Transactions are opened and
closed with explicit ``BEGIN`` / ``COMMIT`` / ``ROLLBACK`` statements issued
by the executor, so nothing outside those statements holds a write lock.
"""

import sqlite3
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, exc as sa_exc
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.pool import NullPool

from tagcache.constants import MIN_SQLITE_VERSION, TURBO_BOOST_PRAGMAS
from tagcache.core.config import StoreSettings
from tagcache.core.exceptions import ConfigurationError, ConnectionFailed
from tagcache.core.logging import get_logger

logger = get_logger(__name__)

# Journal files SQLite keeps next to the database
_SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")


def check_sqlite_support() -> None:
    """Refuse to run on an SQLite library too old for the store."""
    if sqlite3.sqlite_version_info < MIN_SQLITE_VERSION:
        raise ConfigurationError(
            "Cannot use SQLite3 storage: SQLite "
            f"{'.'.join(str(p) for p in MIN_SQLITE_VERSION)}+ is required, "
            f"found {sqlite3.sqlite_version}"
        )


class StorageEngine:
    """Owns the SQLAlchemy engine and the one open connection of a store.

    The connection is created lazily. A file that cannot be opened is deleted
    and opened once more before the failure is treated as fatal.
    """

    def __init__(self, settings: StoreSettings):
        self.settings = settings
        self.db_path: Path = settings.cache_db_complete_path
        self.last_error: Optional[BaseException] = None
        self._engine: Optional[Engine] = None
        self._conn: Optional[Connection] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def connection(self) -> Connection:
        """Return the open connection, connecting first if needed.

        Raises:
            ConnectionFailed: if the file stays unopenable after deleting it
        """
        if self.connected:
            return self._conn

        can_retry = True
        while True:
            try:
                self._conn = self._open()
                return self._conn
            except (sa_exc.SQLAlchemyError, sqlite3.Error) as e:
                self.last_error = e
                self.close()
                # Automatically recover from unopenable files
                if self.db_path.is_file():
                    logger.warning("Cache DB file unopenable, deleting it",
                                   path=str(self.db_path), error=str(e))
                    self._unlink()
                    if can_retry:
                        can_retry = False
                        continue
                raise ConnectionFailed(self.db_path, str(e)) from e

    def _open(self) -> Connection:
        self._engine = create_engine(
            URL.create("sqlite", database=str(self.db_path)),
            poolclass=NullPool,
            isolation_level="AUTOCOMMIT",
            connect_args={"timeout": self.settings.busy_timeout_seconds},
        )
        conn = self._engine.connect()
        try:
            # A file that is not a database only fails on its first read
            conn.exec_driver_sql("PRAGMA schema_version").close()
            if self.settings.turbo_boost:
                for pragma in TURBO_BOOST_PRAGMAS:
                    conn.exec_driver_sql(pragma).close()
        except Exception:
            conn.close()
            raise
        logger.debug("Cache DB connection opened",
                     path=str(self.db_path), turbo_boost=self.settings.turbo_boost)
        return conn

    def in_transaction(self) -> bool:
        """Whether an explicit transaction is open on the connection."""
        if not self.connected:
            return False
        dbapi_conn = self._conn.connection.dbapi_connection
        return bool(dbapi_conn is not None and dbapi_conn.in_transaction)

    def close(self) -> None:
        """Drop the connection handle. The next use reconnects."""
        if self._conn is not None:
            try:
                self._conn.close()
            except (sa_exc.SQLAlchemyError, sqlite3.Error) as e:
                logger.warning("Error closing cache DB connection", error=str(e))
            self._conn = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def delete_file(self) -> None:
        """Close the connection and delete the backing file."""
        self.close()
        self._unlink()
        logger.warning("Cache DB file deleted", path=str(self.db_path))

    def _unlink(self) -> None:
        self.db_path.unlink(missing_ok=True)
        for suffix in _SIDECAR_SUFFIXES:
            Path(f"{self.db_path}{suffix}").unlink(missing_ok=True)
