"""Cache store exception hierarchy.

Query failures are never raised: the executor turns them into a falsy
``QueryResult``. Only configuration problems and conditions that leave the
store unusable surface as exceptions.
"""

from pathlib import Path
from typing import Union


class CacheStoreError(Exception):
    """Base exception for all cache store errors."""


class ConfigurationError(CacheStoreError):
    """Missing or invalid option, or missing SQLite support."""


class FatalStoreError(CacheStoreError):
    """The store is unusable and has to be reconstructed by its owner."""

    def __init__(self, db_path: Union[str, Path], message: str):
        self.db_path = str(db_path)
        super().__init__(f"{message} ({self.db_path})")


class ConnectionFailed(FatalStoreError):
    """The database file could not be opened, even after recreating it."""

    def __init__(self, db_path: Union[str, Path], reason: str = ""):
        message = "Impossible to open cache DB file"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(db_path, message)


class StructureBuildFailed(FatalStoreError):
    """The schema was rebuilt but the version marker is still wrong."""

    def __init__(self, db_path: Union[str, Path]):
        super().__init__(db_path, "Impossible to build cache structure")


class RepairExhausted(FatalStoreError):
    """Rebuild and delete-and-recreate both failed to produce a valid schema."""

    def __init__(self, db_path: Union[str, Path]):
        super().__init__(db_path, "Cache structure could not be repaired")
