"""Corruption detection and recovery for the cache DB file.

A damaged single-file store cannot be fixed row by row. Recovery is either a
schema rebuild or, when that does not stick, deleting the file and starting
empty.
"""

from enum import Enum
from typing import List, Optional

from tagcache.core.exceptions import RepairExhausted
from tagcache.core.logging import get_logger
from tagcache.models.cache import REQUIRED_COLUMNS, REQUIRED_INDEXES
from .structure import StructureManager

logger = get_logger(__name__)


class RepairOutcome(str, Enum):
    HEALTHY = "healthy"
    REBUILT = "rebuilt"
    RECREATED = "recreated"


class RepairCoordinator:
    """Runs after a failed statement, before the executor retries it."""

    def __init__(self, structure: StructureManager):
        self.structure = structure
        self.engine = structure.engine
        self.last_outcome: Optional[RepairOutcome] = None

    def diagnose(self) -> List[str]:
        """Return the names of every failed structure check."""
        problems = []
        if not self.structure.integrity_ok():
            problems.append("integrity")
        for table, columns in REQUIRED_COLUMNS.items():
            if not self.structure.has_table(table, columns):
                problems.append(f"table:{table}")
        for index in REQUIRED_INDEXES:
            if not self.structure.has_index(index):
                problems.append(f"index:{index}")
        if not self.structure.is_valid():
            problems.append("version")
        return problems

    def repair(self) -> RepairOutcome:
        """Verify the structure and rebuild or recreate it when damaged.

        Raises:
            ConnectionFailed: if the recreated file cannot be opened
            RepairExhausted: if even a fresh file cannot be given a valid schema
        """
        problems = self.diagnose()
        if not problems:
            self.last_outcome = RepairOutcome.HEALTHY
            return self.last_outcome

        path = str(self.engine.db_path)
        logger.warning("Cache structure damaged, rebuilding", path=path, problems=problems)
        self.structure.build()
        if self.structure.is_valid():
            self.last_outcome = RepairOutcome.REBUILT
            logger.info("Cache structure repaired", path=path, outcome=self.last_outcome.value)
            return self.last_outcome

        logger.error("Cache structure rebuild failed, recreating the cache DB file", path=path)
        self.engine.delete_file()
        self.engine.connection()
        self.structure.build()
        if not self.structure.is_valid():
            raise RepairExhausted(self.engine.db_path)

        self.last_outcome = RepairOutcome.RECREATED
        logger.info("Cache structure repaired", path=path, outcome=self.last_outcome.value)
        return self.last_outcome
