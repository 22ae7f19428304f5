"""Health and capacity reporting for a cache store.

Provides the disk filling percentage the cache front-end displays and a
health summary for monitoring.
"""
from pathlib import Path
from typing import Any, Dict, Union, TYPE_CHECKING

import psutil

from tagcache.core.exceptions import CacheStoreError, FatalStoreError

if TYPE_CHECKING:
    from tagcache.core.config import StoreSettings
    from tagcache.services.store import CacheStore


def filling_percentage(path: Union[str, Path]) -> int:
    """Percentage (0..100) of the disk holding ``path`` that is in use."""
    usage = psutil.disk_usage(str(path))
    if usage.total == 0:
        raise CacheStoreError(f"can't get disk total space for {path}")
    if usage.free >= usage.total:
        return 100
    return int(100.0 * (usage.total - usage.free) / usage.total)


def check_store(store: "CacheStore") -> Dict[str, bool]:
    """Run the structure checks without repairing anything."""
    structure = store.structure
    return {
        "integrity": structure.integrity_ok(),
        "structure": structure.is_valid(),
    }


def get_health_status(store: "CacheStore", settings: "StoreSettings") -> Dict[str, Any]:
    """Get comprehensive health status of a cache store.

    Returns:
        Dict containing status, problems found, disk usage and feature flags.
    """
    try:
        checks = check_store(store)
        problems = store.repair.diagnose()
    except FatalStoreError as e:
        return {
            "status": "unavailable",
            "path": str(settings.cache_db_complete_path),
            "error": str(e),
        }

    try:
        disk_percent = filling_percentage(settings.cache_db_complete_path.parent)
    except (CacheStoreError, OSError):
        disk_percent = None

    return {
        "status": "healthy" if not problems else "degraded",
        "path": str(settings.cache_db_complete_path),
        "problems": problems,
        "disk_percent": disk_percent,
        "checks": checks,
        "features": {
            "turbo_boost": settings.turbo_boost,
            "automatic_vacuum": settings.automatic_vacuum_factor > 0,
            "infinite_default_lifetime": settings.default_lifetime is None,
        },
    }
