"""
Structured Logging Configuration Module

JSON log lines for ledger requests, rejections and invariant failures.
Request context (caller, action, resource, correlation id) rides on the
log record so every component logs through the same formatter.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Record attributes copied into each JSON line when present
CONTEXT_FIELDS = ("correlation_id", "caller", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  logger_name: str = "token_ledger") -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for structured output, anything else for plain text
        logger_name: Root of the application's logger hierarchy

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    # Handled here; keep records out of the root logger
    logger.propagate = False
    return logger


def get_logger(name: str = "token_ledger") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               caller: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None) -> None:
    """
    Log a ledger action with its request context.

    Args:
        logger: Logger to write through
        level: Level name (info, warning, critical, ...)
        message: Human-readable message
        caller: Account that issued the request
        action: Entry point being invoked
        resource: Account or token acted upon
        correlation_id: Request id for tracing
        extra: Additional structured data
    """
    context = {
        "caller": caller,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        logging.getLevelName(level.upper()),
        message,
        extra={k: v for k, v in context.items() if v is not None}
    )
