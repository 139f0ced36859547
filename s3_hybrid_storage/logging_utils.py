"""
Structured logging for storage operations.

The engine logs through a StorageLoggerAdapter bound to its storage context
(context id, bucket, policy mode); reconciliation and health checks bind the
same context plus a component name. StructuredJsonFormatter renders each
record as one JSON line and groups those context fields under ``storage`` so
aggregators can filter by bucket or context without parsing messages.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

PACKAGE_LOGGER = "s3_hybrid_storage"

# Fields bound by StorageLoggerAdapter, rendered under "storage"
CONTEXT_FIELDS = ("context_id", "bucket", "mode", "component")

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    Render records as single-line JSON.

    Output fields:
    - timestamp: record creation time, ISO 8601 in UTC
    - level, logger, message
    - storage: the bound storage context, unset fields omitted
    - exception: formatted traceback, when present
    - any other ``extra`` fields, stringified if not JSON serializable
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        storage = {
            name: _jsonable(getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        }
        if storage:
            entry["storage"] = storage

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key in CONTEXT_FIELDS or key.startswith("_"):
                continue
            entry[key] = _jsonable(value)

        return json.dumps(entry, default=str)


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = PACKAGE_LOGGER,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Attach a JSON handler to the package logger.

    Logs go to stderr by default so command output on stdout (``stats
    --json``) stays machine-readable.

    Args:
        level: Level number or name ("DEBUG", "INFO", ...)
        logger_name: Logger to configure (default: the package logger)
        stream: Destination stream (default: sys.stderr)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring replaces the handler instead of duplicating output
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    return logger


def get_storage_logger(name: str) -> logging.Logger:
    """Logger for a package component, e.g. ``get_storage_logger("engine")``."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with a storage context.

    ``extra`` passed at the call site wins over the bound context.
    """

    def bind(self, logger: logging.Logger | None = None, **fields: Any) -> StorageLoggerAdapter:
        """Derive an adapter with additional context fields.

        Args:
            logger: Logger for the new adapter (default: this adapter's logger)
            **fields: Context fields to add or override
        """
        return StorageLoggerAdapter(logger or self.logger, {**(self.extra or {}), **fields})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
