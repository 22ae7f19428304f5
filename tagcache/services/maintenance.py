"""Probabilistic compaction of the cache DB file."""

import random
from typing import Optional

from tagcache.core.logging import get_logger
from .executor import QueryExecutor

logger = get_logger(__name__)


class VacuumPolicy:
    """Runs ``VACUUM`` on average once every ``factor`` remove/clean calls.

    factor 0 disables compaction, 1 compacts every time.
    """

    def __init__(self, executor: QueryExecutor, factor: int,
                 rng: Optional[random.Random] = None):
        self.executor = executor
        self.factor = factor
        self._rng = rng or random.Random()

    @property
    def enabled(self) -> bool:
        return self.factor > 0

    def maybe_vacuum(self) -> bool:
        """Draw in ``[1, factor]`` and compact on a 1. Returns whether it ran."""
        if not self.enabled:
            return False
        if self._rng.randint(1, self.factor) != 1:
            return False
        return self.vacuum()

    def vacuum(self) -> bool:
        res = self.executor.execute("VACUUM")
        if res:
            logger.info("Cache DB compacted", path=str(self.executor.engine.db_path))
        return bool(res)
