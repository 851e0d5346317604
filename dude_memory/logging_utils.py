"""
Structured logging for the memory store.

Store loggers live under ``dude_memory.<component>``. Adapters log through
a ``StorageLoggerAdapter`` bound to their backend and, once resolved, the
current project, so every line can be traced to the store that wrote it.

Hooks and CLIs embedding the store print their own output on stdout; log
lines therefore go to stderr, as JSON when the caller asks for it.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

ROOT_LOGGER = "dude_memory"

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per log line.

    Fields: ``timestamp`` (record creation time, ISO 8601 UTC), ``level``,
    ``logger``, ``message``, ``exception`` when present, plus every
    ``extra`` field such as ``backend``, ``project`` or ``record_id``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                entry[key] = _jsonable(value)

        return json.dumps(entry, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Send a logger's output through ``StructuredJsonFormatter``.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: root logger)
        stream: Destination (default: stderr)

    Returns:
        The configured logger; earlier handlers are replaced
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_storage_logger(component: str) -> logging.Logger:
    """Logger named ``dude_memory.<component>`` (e.g. ``legacy``, ``native``)."""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


class StorageLoggerAdapter(logging.LoggerAdapter):
    """Adds the adapter's bound context to every record; call-site ``extra`` wins."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
