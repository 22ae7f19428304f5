"""Cache engine services.

Usage:
    from tagcache.services import CacheStore

    store = CacheStore(settings)
"""

from .executor import QueryExecutor, QueryResult
from .repair import RepairCoordinator, RepairOutcome
from .store import DEFAULT_LIFETIME, CacheStore

__all__ = [
    "CacheStore",
    "DEFAULT_LIFETIME",
    "QueryExecutor",
    "QueryResult",
    "RepairCoordinator",
    "RepairOutcome",
]
