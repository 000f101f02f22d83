"""
Structured JSON logging for repokit.

Every repokit module logs through ``logging.getLogger(__name__)``. Records
carry data-access context (scope correlation ID, entity, lookup strategy,
row counts, latency) as top-level JSON keys so scope activity can be
followed across statements.

Applications embedding the library call ``setup_logging()`` once; the
library itself never configures handlers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


# Promoted to top-level keys, in this order, when set on a record
CONTEXT_FIELDS = (
    "scope_id",
    "entity",
    "strategy",
    "rows",
    "affected",
    "elapsed_ms",
)

# Standard LogRecord attributes; never copied into the payload
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(scope_id)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """
    Render a record as one JSON object per line.

    Keys: timestamp (UTC, ISO 8601), level, logger, message, then the
    context fields that are set, then any other ``extra`` values, then
    exception / stack_info when present.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123456+00:00", "level": "DEBUG",
         "logger": "repokit.query.executor", "message": "Query executed",
         "scope_id": "3f2a9c01be77", "entity": "Player", "strategy": "derived",
         "rows": 2, "elapsed_ms": 0.84}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(payload, default=str)


class _ScopeDefault(logging.Filter):
    """Give records without a scope a placeholder so PLAIN_FORMAT renders."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "scope_id", None) is None:
            record.scope_id = "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Replace the root logger's handlers with a single stream handler.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines (True) or a plain text layout (False)
        stream: Output stream, stdout by default
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.addFilter(_ScopeDefault())
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    # SQL echo is controlled by REPOKIT_DATABASE_ECHO, not by the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    scope_id: Optional[str] = None,
    entity: Optional[str] = None,
    strategy: Optional[str] = None,
    rows: Optional[int] = None,
    affected: Optional[int] = None,
    elapsed_ms: Optional[float] = None,
    **extra_fields: Any
) -> None:
    """
    Log with data-access context attached as ``extra``.

    Context arguments left as None are omitted from the record.

    Example:
        log_with_context(logger, "debug", "Scope committed",
                         scope_id=scope.scope_id, elapsed_ms=4.2)
    """
    context = {
        "scope_id": scope_id,
        "entity": entity,
        "strategy": strategy,
        "rows": rows,
        "affected": affected,
        "elapsed_ms": elapsed_ms,
    }
    extra = {key: value for key, value in context.items() if value is not None}
    extra.update(extra_fields)

    getattr(logger, level.lower())(message, extra=extra)
