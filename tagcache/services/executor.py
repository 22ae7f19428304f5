"""Statement execution with binary-safe binding and repair-and-retry.

Every storage-layer fault stops here: callers only ever see a
``QueryResult``, falsy when the statement did not happen. The fatal errors
raised by the repair path are the only exceptions that cross this boundary.
"""

import sqlite3
import sys
import threading
import warnings
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import exc as sa_exc

from tagcache.core.logging import Severity, get_logger, log_event, severity_for
from .engine import StorageEngine

logger = get_logger(__name__)

# Errors that count as a failed statement; anything else propagates
STATEMENT_ERRORS = (sa_exc.SQLAlchemyError, sqlite3.Error, Warning)


@dataclass
class QueryResult:
    """Outcome of one statement, with its rows fetched eagerly."""

    ok: bool
    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1
    error: Optional[BaseException] = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def failure(cls, error: BaseException) -> "QueryResult":
        return cls(ok=False, error=error)

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self, default: Any = None) -> Any:
        """First column of the first row."""
        row = self.first()
        if row is None:
            return default
        return next(iter(row.values()), default)

    def column(self, name: str) -> List[Any]:
        return [row[name] for row in self.rows]


def bind_parameter(value: Any) -> Any:
    """Prepare one positional parameter for the driver.

    Byte sequences are bound as BLOBs. Everything else, text holding NUL
    bytes included, keeps the driver's own type inference.
    """
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


# Python 3.14+ can scope warning filters per context (the free-threaded default)
_CONTEXT_AWARE_WARNINGS = bool(getattr(sys.flags, "context_aware_warnings", False))


class _WarningEscalation:
    """Turns warnings into exceptions for the threads running a statement.

    While any statement runs, every warning goes through ``_show``. It raises
    in the thread that warned when that thread is inside a statement and
    hands the warning to the previous display function otherwise. The first
    thread entering installs the hook and an ``always`` filter; the last one
    leaving restores the previous filters.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active = 0
        self._guard: Optional[warnings.catch_warnings] = None
        self._display: Optional[Callable[..., None]] = None
        self._local = threading.local()

    @contextmanager
    def scope(self) -> Iterator[None]:
        with self._lock:
            if self._active == 0:
                self._guard = warnings.catch_warnings()
                self._guard.__enter__()
                warnings.simplefilter("always")
                self._display = warnings.showwarning
                warnings.showwarning = self._show
            self._active += 1
        self._local.depth = getattr(self._local, "depth", 0) + 1
        try:
            yield
        finally:
            self._local.depth -= 1
            with self._lock:
                self._active -= 1
                if self._active == 0:
                    guard, self._guard = self._guard, None
                    guard.__exit__(None, None, None)

    def _show(self, message, category, filename, lineno, file=None, line=None):
        if getattr(self._local, "depth", 0):
            raise message if isinstance(message, Warning) else category(message)
        self._display(message, category, filename, lineno, file, line)


_escalation = _WarningEscalation()


@contextmanager
def escalated_errors() -> Iterator[None]:
    """Promote warnings raised by the calling thread to exceptions.

    Warnings from other threads are displayed as before, and the previous
    warning filters are restored on every exit path.
    """
    if _CONTEXT_AWARE_WARNINGS:
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            yield
        return
    with _escalation.scope():
        yield


class QueryExecutor:
    """Runs statements against the store's connection.

    On the first failure of a call the repair handler runs and the statement
    is retried once. A second failure is logged and returned as a failed
    ``QueryResult``. Inside an explicit transaction the transaction is rolled
    back before the repair and the statement fails without a retry.
    """

    def __init__(self, engine: StorageEngine,
                 repair_handler: Optional[Callable[[], Any]] = None):
        self.engine = engine
        self._repair_handler = repair_handler

    def set_repair_handler(self, handler: Callable[[], Any]) -> None:
        """Set the callable invoked before a failed statement is retried."""
        self._repair_handler = handler

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.engine.last_error

    def execute(self, sql: str, *params: Any) -> QueryResult:
        """Execute ``sql`` with positional ``?`` parameters."""
        retry = True
        while True:
            try:
                return self._run(sql, params)
            except STATEMENT_ERRORS as e:
                self.engine.last_error = e
                severity = severity_for(e)
                if retry:
                    retry = False
                    # A repair may drop the tables the open transaction wrote to
                    in_transaction = self.engine.in_transaction()
                    if in_transaction:
                        self.rollback()
                    if self._repair_handler is not None:
                        self._repair_handler()
                    if in_transaction:
                        log_event(logger, max(Severity.WARNING, severity),
                                  "Query failed inside a transaction, rolled back",
                                  sql=sql, error=str(e))
                        return QueryResult.failure(e)
                    log_event(logger, max(Severity.NOTICE, severity),
                              "Query failed, retrying", sql=sql, error=str(e))
                    continue
                log_event(logger, max(Severity.ERROR, severity),
                          "Query failed, giving up", sql=sql, error=str(e))
                return QueryResult.failure(e)

    def probe(self, sql: str, *params: Any) -> QueryResult:
        """Execute once, without repair, retry or error logging."""
        try:
            return self._run(sql, params)
        except STATEMENT_ERRORS as e:
            self.engine.last_error = e
            logger.debug("Probe failed", sql=sql, error=str(e))
            return QueryResult.failure(e)

    def _run(self, sql: str, params: Tuple[Any, ...]) -> QueryResult:
        conn = self.engine.connection()
        bound = tuple(bind_parameter(p) for p in params)
        with escalated_errors():
            result = conn.exec_driver_sql(sql, bound) if bound else conn.exec_driver_sql(sql)
            try:
                rowcount = result.rowcount
                rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
                return QueryResult(ok=True, rows=rows, rowcount=rowcount)
            finally:
                result.close()

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def begin(self) -> QueryResult:
        return self.execute("BEGIN")

    def commit(self) -> QueryResult:
        return self.execute("COMMIT")

    def rollback(self) -> QueryResult:
        """Roll back the open transaction, if there is one."""
        if not self.engine.in_transaction():
            return QueryResult(ok=True)
        result = self.probe("ROLLBACK")
        if not result:
            logger.warning("Rollback failed", error=str(result.error))
        return result
