"""
Structured logging for the update publisher.

Every component logs through one of a fixed set of named loggers, all under
the ``publisher.`` namespace:

- api: admin and public HTTP endpoints
- services: release lifecycle, manifest generation, update evaluation
- storage: blob store uploads, listings and removals
- db: engine setup and migrations
- cli: command-line invocations

Outside production, records are written to stderr in a readable one-line
format (stdout belongs to CLI command output). In production each logger
writes JSON lines to its own rotating file.

Structured context travels through ``extra``:

    logger.info("Published 1.2.0 (stable)", extra={"event": "publish.completed", "channel": "stable"})
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional


LOGGER_NAMES = ("api", "services", "storage", "db", "cli")
NAMESPACE = "publisher"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Attributes present on every LogRecord; anything else came from extra={...}
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


@dataclass(frozen=True)
class LoggingOptions:
    """Logging settings read from PUBLISHER_LOG_LEVEL, PUBLISHER_LOG_DIR and PUBLISHER_ENV."""
    level: int
    log_dir: Path
    production: bool

    @classmethod
    def from_env(cls) -> "LoggingOptions":
        level_name = os.environ.get("PUBLISHER_LOG_LEVEL", "INFO").upper()
        return cls(
            level=getattr(logging, level_name, logging.INFO),
            log_dir=Path(os.environ.get("PUBLISHER_LOG_DIR", "logs")),
            production=os.environ.get("PUBLISHER_ENV", "development").lower() == "production",
        )


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fixed keys: timestamp (UTC, ISO 8601), level, logger, message, module,
    function, line, and exception when one is attached. Every field passed
    through ``extra`` is copied in as-is; values json cannot encode are
    rendered with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """``[2026-01-12 10:30:45] INFO - publisher.services - Published version 1.2.0 (stable)``"""

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def _file_handler(options: LoggingOptions, logger_name: str) -> logging.Handler:
    options.log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        options.log_dir / f"{logger_name}.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    return handler


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ConsoleFormatter())
    return handler


def configure_logging(options: Optional[LoggingOptions] = None) -> Dict[str, logging.Logger]:
    """
    (Re)configure every publisher logger.

    Handlers installed by a previous call are replaced, so calling this
    again after changing the environment is safe. Loggers do not propagate
    to the root logger.

    Args:
        options: Explicit options (default: read from the environment)

    Returns:
        Short logger name -> configured Logger
    """
    options = options or LoggingOptions.from_env()
    configured: Dict[str, logging.Logger] = {}

    for name in LOGGER_NAMES:
        logger = logging.getLogger(f"{NAMESPACE}.{name}")
        logger.setLevel(options.level)
        logger.propagate = False
        logger.handlers.clear()

        handler = _file_handler(options, name) if options.production else _console_handler()
        handler.setLevel(options.level)
        logger.addHandler(handler)
        configured[name] = logger

    return configured


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Return one of the publisher loggers, configuring logging on first use.

    Raises:
        ValueError: If *name* is not one of LOGGER_NAMES
    """
    global _loggers

    if _loggers is None:
        _loggers = configure_logging()

    try:
        return _loggers[name]
    except KeyError:
        raise ValueError(
            f"Unknown logger name: {name}. Valid names: {', '.join(LOGGER_NAMES)}"
        ) from None


def init_logging() -> Dict[str, logging.Logger]:
    """Configure logging at application startup."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
