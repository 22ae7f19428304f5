"""File-backed SQLite cache store with tag invalidation, expiry and self-repair.

- `services.store`: `CacheStore`, the backend API (main entry point)
- `services.executor`: statement execution with repair-and-retry
- `services.structure`: schema build and version checks
- `services.repair`: corruption detection and recovery
- `services.tags`: tag edges and the tag set queries
- `services.maintenance`: probabilistic VACUUM
"""
from tagcache.constants import CleaningMode
from tagcache.core.config import StoreSettings, load_settings
from tagcache.core.exceptions import (
    CacheStoreError,
    ConfigurationError,
    ConnectionFailed,
    FatalStoreError,
    RepairExhausted,
    StructureBuildFailed,
)
from tagcache.models.cache import Capabilities, RecordMetadata
from tagcache.services.store import DEFAULT_LIFETIME, CacheStore

__all__ = [
    "CacheStore",
    "CleaningMode",
    "DEFAULT_LIFETIME",
    "StoreSettings",
    "load_settings",
    "Capabilities",
    "RecordMetadata",
    "CacheStoreError",
    "ConfigurationError",
    "FatalStoreError",
    "ConnectionFailed",
    "StructureBuildFailed",
    "RepairExhausted",
]
