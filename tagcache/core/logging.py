"""Structured logging configuration and severity helpers."""

import sys
import logging
import sqlite3
from enum import IntEnum
from pathlib import Path
from typing import Any, List, Optional

import structlog
from sqlalchemy import exc as sa_exc

from tagcache.core.config import StoreSettings


class Severity(IntEnum):
    """Severity levels understood by the cache log sink."""

    DEBUG = 10
    INFO = 20
    NOTICE = 25
    WARNING = 30
    ERROR = 40


def _renderer(log_format: str) -> List[Any]:
    if log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=False,
                                          exception_formatter=structlog.dev.plain_traceback)]


def configure_logging(settings: StoreSettings) -> None:
    """Route store events through stdlib logging at ``settings.log_level``.

    SQLAlchemy's own loggers stay at WARNING; statement echo would otherwise
    repeat every query the store runs.
    """
    level = logging.getLevelName(settings.log_level)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    for handler in handlers:
        handler.setLevel(level)
    logging.basicConfig(level=level, handlers=handlers, format="%(message)s")

    for name in ("sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(name).setLevel(logging.WARNING)

    timestamp = "iso" if settings.log_format == "json" else "%H:%M:%S"
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt=timestamp),
            structlog.processors.StackInfoRenderer(),
            *_renderer(settings.log_format),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def severity_for(error: BaseException) -> Severity:
    """Map a storage engine exception to a log severity.

    Corruption-class failures are errors, lock/IO/constraint failures and
    escalated warnings are warnings, anything else is informational.
    """
    if isinstance(error, Warning):
        return Severity.WARNING
    if isinstance(error, sa_exc.DBAPIError):
        error = error.orig if error.orig is not None else error
    if isinstance(error, (sqlite3.OperationalError, sqlite3.IntegrityError,
                          sa_exc.OperationalError, sa_exc.IntegrityError)):
        return Severity.WARNING
    if isinstance(error, (sqlite3.DatabaseError, sa_exc.DatabaseError)):
        return Severity.ERROR
    return Severity.INFO


def log_event(logger: structlog.BoundLogger, severity: Severity, event: str,
              **kwargs) -> None:
    """Emit ``event`` at the level matching ``severity``.

    NOTICE has no stdlib level, so it goes out at info with the severity
    attached as a field.
    """
    if severity >= Severity.ERROR:
        logger.error(event, **kwargs)
    elif severity >= Severity.WARNING:
        logger.warning(event, **kwargs)
    elif severity >= Severity.NOTICE:
        logger.info(event, severity="notice", **kwargs)
    elif severity >= Severity.INFO:
        logger.info(event, **kwargs)
    else:
        logger.debug(event, **kwargs)


def log_cache_operation(logger: structlog.BoundLogger, operation: str,
                        key: Optional[str] = None, hit: Optional[bool] = None,
                        **kwargs) -> None:
    """Log cache operations."""
    log_data = {
        "operation": operation,
        **kwargs
    }

    if key is not None:
        log_data["cache_key"] = key
    if hit is not None:
        log_data["cache_hit"] = hit

    logger.debug("Cache operation", **log_data)
