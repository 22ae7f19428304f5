"""Tag index: id/tag edges and the set queries built on them."""

from typing import Iterable, List, Optional, Union

from tagcache.core.logging import get_logger
from .executor import QueryExecutor

logger = get_logger(__name__)

TagsArg = Union[str, Iterable[str], None]

_TAG_SELECT = "SELECT DISTINCT(id) AS id FROM tag WHERE name=?"


def as_tag_list(tags: TagsArg) -> List[str]:
    """Accept a single tag or any iterable of tags."""
    if tags is None:
        return []
    if isinstance(tags, str):
        return [tags]
    return list(tags)


class TagIndex:
    """Many-to-many edges between tag names and cache ids.

    Queries here are plain reads; the store checks the structure before
    calling them.
    """

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    def register(self, cache_id: str, tag: str) -> bool:
        """Attach ``tag`` to ``cache_id``, replacing an existing edge."""
        if not (self.executor.execute("DELETE FROM tag WHERE name=? AND id=?", tag, cache_id)
                and self.executor.execute("INSERT INTO tag (name, id) VALUES (?, ?)", tag, cache_id)):
            logger.warning("Impossible to register tag", tag=tag, cache_id=cache_id)
            return False
        return True

    def ids_matching_all(self, tags: TagsArg) -> List[str]:
        """Ids carrying every one of ``tags`` (logical AND)."""
        tags = as_tag_list(tags)
        if not tags:
            return []
        sql = " INTERSECT ".join([_TAG_SELECT] * len(tags))
        return self._ids(sql, tags)

    def ids_matching_none(self, tags: TagsArg) -> List[str]:
        """Record ids carrying none of ``tags``."""
        tags = as_tag_list(tags)
        if not tags:
            return self._ids("SELECT id FROM cache", [])
        union = " UNION ".join([_TAG_SELECT] * len(tags))
        return self._ids(f"SELECT id FROM cache WHERE id NOT IN ({union})", tags)

    def ids_matching_any(self, tags: TagsArg) -> List[str]:
        """Ids carrying at least one of ``tags`` (logical OR)."""
        tags = as_tag_list(tags)
        if not tags:
            return []
        sql = " UNION ".join([_TAG_SELECT] * len(tags))
        return self._ids(sql, tags)

    def tag_names(self) -> List[str]:
        res = self.executor.execute("SELECT DISTINCT(name) AS name FROM tag")
        return res.column("name") if res else []

    def live_ids(self, now: int) -> List[str]:
        """Ids of records that are still valid at ``now``."""
        return self._ids("SELECT id FROM cache WHERE (expire=0 OR expire>?)", [now])

    def tags_for(self, cache_id: str) -> Optional[List[str]]:
        """Tag names attached to ``cache_id``; ``None`` if the lookup failed."""
        res = self.executor.execute("SELECT name FROM tag WHERE id=?", cache_id)
        if not res:
            return None
        return res.column("name")

    def _ids(self, sql: str, params: List) -> List[str]:
        res = self.executor.execute(sql, *params)
        if not res:
            return []
        return res.column("id")
