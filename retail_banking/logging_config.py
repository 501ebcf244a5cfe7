"""
Structured Logging Configuration Module

Every ledger, money movement and term-deposit action is emitted as one JSON
line. Module loggers are children of the application logger and share its
single stream handler.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

APP_LOGGER = "retail_banking"

# Optional structured attributes copied from a record into the JSON line
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """Renders a log record as a single JSON object"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = APP_LOGGER) -> logging.Logger:
    """
    Attach a JSON stream handler to the application logger.

    Calling it again swaps the handler instead of stacking a second one, so
    configuration reloads are safe.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the application logger

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    stream = logging.StreamHandler()
    stream.setFormatter(JSONFormatter())
    logger.addHandler(stream)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = APP_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None) -> None:
    """
    Emit a banking action with its structured context.

    Args:
        logger: Module logger
        level: Level name (info, warning, error, ...)
        message: Human readable message
        user_id: Customer or operator the action belongs to
        action: Short action name such as "transfer" or "fd_created"
        resource: Account, FD or RD number acted upon
        correlation_id: Transaction id or request id
        extra: Additional structured data
    """
    numeric_level = getattr(logging, level.upper())
    if not logger.isEnabledFor(numeric_level):
        return

    record = logger.makeRecord(logger.name, numeric_level, __name__, 0, message, (), None)
    context = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    for key, value in context.items():
        if value:
            setattr(record, key, value)

    logger.handle(record)
