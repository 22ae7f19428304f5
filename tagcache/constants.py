"""Centralized constants for the cache store.

Single source of truth for the schema revision and the cleaning modes the
cache front-end dispatches on.
"""

from enum import Enum
from typing import FrozenSet

# =============================================================================
# SCHEMA
# =============================================================================

# Revision stored in the version table; anything else triggers a rebuild
SCHEMA_VERSION: int = 1

# Statements dropping every schema object; "IF EXISTS" keeps them idempotent
DROP_STATEMENTS = (
    "DROP INDEX IF EXISTS tag_id_index",
    "DROP INDEX IF EXISTS tag_name_index",
    "DROP INDEX IF EXISTS cache_id_expire_index",
    "DROP TABLE IF EXISTS version",
    "DROP TABLE IF EXISTS cache",
    "DROP TABLE IF EXISTS tag",
)

# =============================================================================
# CLEANING MODES
# =============================================================================


class CleaningMode(str, Enum):
    """Modes accepted by ``clean()``."""

    ALL = "all"
    OLD = "old"
    MATCHING_TAG = "matchingTag"
    NOT_MATCHING_TAG = "notMatchingTag"
    MATCHING_ANY_TAG = "matchingAnyTag"


# Modes that resolve ids through the tag index and remove them one by one
TAG_CLEANING_MODES: FrozenSet[CleaningMode] = frozenset([
    CleaningMode.MATCHING_TAG,
    CleaningMode.NOT_MATCHING_TAG,
    CleaningMode.MATCHING_ANY_TAG,
])

# =============================================================================
# ENGINE
# =============================================================================

# Oldest SQLite library with WAL journaling
MIN_SQLITE_VERSION = (3, 7, 0)

TURBO_BOOST_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
)
