"""SQLite cache backend with tags, expiry and self-repair.

This is the object a cache front-end talks to. Payloads are opaque bytes
(serialization happens in the front-end), ids and tags are strings.

Usage:
    from tagcache import CacheStore, CleaningMode

    with CacheStore.from_path("/var/cache/app/cache.db") as store:
        store.save(b"payload", "page_home", tags=["pages"], lifetime=600)
        store.load("page_home")
        store.clean(CleaningMode.MATCHING_TAG, ["pages"])
"""

import random
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from tagcache.constants import TAG_CLEANING_MODES, CleaningMode
from tagcache.core.config import StoreSettings, load_settings
from tagcache.core.health import filling_percentage
from tagcache.core.logging import get_logger, log_cache_operation
from tagcache.models.cache import Capabilities, RecordMetadata
from .engine import StorageEngine, check_sqlite_support
from .executor import QueryExecutor
from .maintenance import VacuumPolicy
from .repair import RepairCoordinator
from .structure import StructureManager
from .tags import TagIndex, TagsArg, as_tag_list

logger = get_logger(__name__)


class _DefaultLifetime:
    def __repr__(self) -> str:
        return "DEFAULT_LIFETIME"


# Passed as ``lifetime`` to use the configured default
DEFAULT_LIFETIME: _DefaultLifetime = _DefaultLifetime()

Lifetime = Union[int, None, _DefaultLifetime]


class CacheStore:
    """Tag-aware cache store backed by one SQLite file.

    Reads return ``None`` and writes return ``False`` on any storage failure;
    a failed lookup and a missing key look the same on purpose. Only
    ``FatalStoreError`` subclasses escape, meaning the file could not be
    opened or repaired and the store has to be rebuilt by its owner.
    """

    def __init__(self, settings: StoreSettings,
                 clock: Optional[Callable[[], float]] = None,
                 rng: Optional[random.Random] = None,
                 lifetime_resolver: Optional[Callable[[Lifetime], Optional[int]]] = None):
        check_sqlite_support()
        self.settings = settings
        self._clock = clock or time.time
        self._lifetime_resolver = lifetime_resolver or self._resolve_lifetime

        self.engine = StorageEngine(settings)
        self.executor = QueryExecutor(self.engine)
        self.structure = StructureManager(self.executor)
        self.repair = RepairCoordinator(self.structure)
        self.executor.set_repair_handler(self.repair.repair)
        self.tags = TagIndex(self.executor)
        self.maintenance = VacuumPolicy(self.executor, settings.automatic_vacuum_factor, rng)

    @classmethod
    def from_path(cls, path: Union[str, Path], **options) -> "CacheStore":
        """Build a store for ``path``; other settings come from ``options`` or the environment."""
        store_options = {
            key: options.pop(key) for key in ("clock", "rng", "lifetime_resolver") if key in options
        }
        settings = load_settings(cache_db_complete_path=path, **options)
        return cls(settings, **store_options)

    def close(self) -> None:
        self.engine.close()

    def __enter__(self) -> "CacheStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _now(self) -> int:
        return int(self._clock())

    def _resolve_lifetime(self, specific_lifetime: Lifetime) -> Optional[int]:
        """Explicit lifetime wins; ``DEFAULT_LIFETIME`` uses the configured one."""
        if specific_lifetime is DEFAULT_LIFETIME:
            return self.settings.default_lifetime
        return specific_lifetime

    # ============================================================================
    # Records
    # ============================================================================

    def load(self, cache_id: str, bypass_validity: bool = False) -> Optional[bytes]:
        """Return the payload stored under ``cache_id``, or ``None``.

        Args:
            cache_id: Cache id
            bypass_validity: Also return records that have expired

        Returns:
            The payload bytes, ``None`` if missing, expired or unreadable
        """
        self.structure.ensure()
        sql = "SELECT content FROM cache WHERE id=?"
        params = [cache_id]
        if not bypass_validity:
            sql += " AND (expire=0 OR expire>?)"
            params.append(self._now())

        res = self.executor.execute(sql, *params)
        row = res.first() if res else None
        log_cache_operation(logger, "load", cache_id, hit=row is not None)
        if row is None:
            return None
        content = row["content"]
        if isinstance(content, str):
            # Text written by another client of the same file
            content = content.encode("utf-8")
        return content

    def test(self, cache_id: str) -> Optional[int]:
        """Return the last-modified timestamp of a valid record, or ``None``."""
        self.structure.ensure()
        res = self.executor.execute(
            "SELECT lastModified FROM cache WHERE id=? AND (expire=0 OR expire>?)",
            cache_id, self._now()
        )
        row = res.first() if res else None
        if row is None:
            return None
        return int(row["lastModified"])

    def save(self, data: Union[bytes, str], cache_id: str, tags: TagsArg = (),
             lifetime: Lifetime = DEFAULT_LIFETIME) -> bool:
        """Store ``data`` under ``cache_id``, replacing any previous record.

        Tag edges from an earlier save of the same id are left in place, even
        for tags missing from ``tags``; only ``remove`` and ``clean`` drop them.

        Args:
            data: Payload to cache
            cache_id: Cache id
            tags: Tags to attach to the record
            lifetime: Lifetime in seconds, ``None`` for infinite, or
                ``DEFAULT_LIFETIME`` for the configured default

        Returns:
            True if the record and all of its tags were written
        """
        self.structure.ensure()
        lifetime = self._lifetime_resolver(lifetime)
        mktime = self._now()
        expire = 0 if lifetime is None else mktime + int(lifetime)
        content = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        tag_list = as_tag_list(tags)

        def write() -> bool:
            if not (self.executor.execute("DELETE FROM cache WHERE id=?", cache_id)
                    and self.executor.execute(
                        "INSERT INTO cache (id, content, lastModified, expire) VALUES (?, ?, ?, ?)",
                        cache_id, content, mktime, expire
                    )):
                logger.warning("Impossible to store the cache record", cache_id=cache_id)
                return False
            for tag in tag_list:
                if not self.tags.register(cache_id, tag):
                    return False
            return True

        saved = self._in_transaction(write)
        log_cache_operation(logger, "save", cache_id, success=saved,
                            expire=expire, tags=len(tag_list))
        return saved

    def remove(self, cache_id: str) -> bool:
        """Delete a record and its tag edges.

        Returns:
            True if the record existed and both deletes succeeded
        """
        self.structure.ensure()
        removed = self._remove(cache_id)
        self.maintenance.maybe_vacuum()
        return removed

    def _remove(self, cache_id: str) -> bool:
        res = self.executor.execute("SELECT COUNT(*) AS nbr FROM cache WHERE id=?", cache_id)
        if not res:
            return False
        existed = int(res.scalar(0) or 0) > 0

        def delete() -> bool:
            if not self.executor.execute("DELETE FROM cache WHERE id=?", cache_id):
                return False
            return bool(self.executor.execute("DELETE FROM tag WHERE id=?", cache_id))

        deleted = self._in_transaction(delete)
        log_cache_operation(logger, "remove", cache_id, hit=existed, success=deleted)
        return existed and deleted

    def touch(self, cache_id: str, extra_lifetime: int) -> bool:
        """Push back the expiry of a valid record by ``extra_lifetime`` seconds.

        The new expiry is the old one plus ``extra_lifetime``. A record with
        infinite lifetime (expire 0) therefore becomes finite.
        """
        self.structure.ensure()
        now = self._now()
        res = self.executor.execute(
            "SELECT expire FROM cache WHERE id=? AND (expire=0 OR expire>?)", cache_id, now
        )
        row = res.first() if res else None
        if row is None:
            return False
        new_expire = int(row["expire"]) + int(extra_lifetime)
        return bool(self.executor.execute(
            "UPDATE cache SET lastModified=?, expire=? WHERE id=?", now, new_expire, cache_id
        ))

    def force_expire(self, cache_id: str) -> bool:
        """Test helper: make a record expired as of one second ago."""
        self.structure.ensure()
        past = self._now() - 1
        return bool(self.executor.execute(
            "UPDATE cache SET lastModified=?, expire=? WHERE id=?", past, past, cache_id
        ))

    def get_metadatas(self, cache_id: str) -> Optional[RecordMetadata]:
        """Tags, last-modified and expire timestamps of a record, or ``None``."""
        self.structure.ensure()
        tags = self.tags.tags_for(cache_id)
        if tags is None:
            return None
        res = self.executor.execute(
            "SELECT lastModified, expire FROM cache WHERE id=?", cache_id
        )
        row = res.first() if res else None
        if row is None:
            return None
        return RecordMetadata(
            tags=tags,
            last_modified=int(row["lastModified"]),
            expire=int(row["expire"]),
        )

    # ============================================================================
    # Cleaning
    # ============================================================================

    def clean(self, mode: Union[CleaningMode, str] = CleaningMode.ALL,
              tags: TagsArg = ()) -> bool:
        """Remove records according to ``mode``.

        ALL empties the store, OLD drops expired records, and the tag modes
        remove every id returned by the matching tag query, one at a time.
        Compaction is considered once per call, whatever the number of ids.

        Returns:
            True if every delete succeeded; False for an unknown mode
        """
        self.structure.ensure()
        result = self._clean(mode, tags)
        self.maintenance.maybe_vacuum()
        return result

    def _clean(self, mode: Union[CleaningMode, str], tags: TagsArg) -> bool:
        try:
            mode = CleaningMode(mode)
        except ValueError:
            logger.warning("Unknown cleaning mode", mode=str(mode))
            return False

        if mode is CleaningMode.ALL:
            def delete_all() -> bool:
                if not self.executor.execute("DELETE FROM cache"):
                    return False
                return bool(self.executor.execute("DELETE FROM tag"))
            return self._in_transaction(delete_all)

        if mode is CleaningMode.OLD:
            mktime = self._now()

            def delete_old() -> bool:
                if not self.executor.execute(
                    "DELETE FROM tag WHERE id IN "
                    "(SELECT id FROM cache WHERE expire>0 AND expire<=?)", mktime
                ):
                    return False
                return bool(self.executor.execute(
                    "DELETE FROM cache WHERE expire>0 AND expire<=?", mktime
                ))
            return self._in_transaction(delete_old)

        if mode in TAG_CLEANING_MODES:
            ids = self._ids_for_mode(mode, tags)
            result = True
            for cache_id in ids:
                result = self._remove(cache_id) and result
            logger.info("Cleaned cache records by tags", mode=mode.value,
                        tags=as_tag_list(tags), count=len(ids), success=result)
            return result

        return False

    def _ids_for_mode(self, mode: CleaningMode, tags: TagsArg) -> List[str]:
        if mode is CleaningMode.MATCHING_TAG:
            return self.tags.ids_matching_all(tags)
        if mode is CleaningMode.NOT_MATCHING_TAG:
            return self.tags.ids_matching_none(tags)
        return self.tags.ids_matching_any(tags)

    def _in_transaction(self, work: Callable[[], bool]) -> bool:
        """Run ``work`` between BEGIN and COMMIT; roll back unless it returns True."""
        if not self.executor.begin():
            return False
        try:
            ok = work()
        except Exception:
            self.executor.rollback()
            raise
        if ok and self.executor.commit():
            return True
        self.executor.rollback()
        return False

    # ============================================================================
    # Listing and tag queries
    # ============================================================================

    def get_ids(self) -> List[str]:
        """Ids of every record that is still valid."""
        self.structure.ensure()
        return self.tags.live_ids(self._now())

    def get_tags(self) -> List[str]:
        self.structure.ensure()
        return self.tags.tag_names()

    def get_ids_matching_tags(self, tags: TagsArg = ()) -> List[str]:
        """Ids carrying all of ``tags``."""
        self.structure.ensure()
        return self.tags.ids_matching_all(tags)

    def get_ids_not_matching_tags(self, tags: TagsArg = ()) -> List[str]:
        """Ids carrying none of ``tags``."""
        self.structure.ensure()
        return self.tags.ids_matching_none(tags)

    def get_ids_matching_any_tags(self, tags: TagsArg = ()) -> List[str]:
        """Ids carrying at least one of ``tags``."""
        self.structure.ensure()
        return self.tags.ids_matching_any(tags)

    # ============================================================================
    # Backend description
    # ============================================================================

    def get_filling_percentage(self) -> int:
        return filling_percentage(self.settings.cache_db_complete_path.parent)

    def get_capabilities(self) -> Capabilities:
        return Capabilities()
