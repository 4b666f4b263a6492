"""Logging setup: console output plus optional JSON log files.

Refresh code logs through ``get_logger(__name__, retailer=..., product_id=...)``.
Those context fields become top-level keys in the JSON files and a
``[retailer=... product_id=...]`` suffix on the console.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pythonjsonlogger import jsonlogger

from brickprice.config import settings

CONTEXT_FIELDS = ("retailer", "product_id")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


def record_context(record: logging.LogRecord) -> dict:
    """Context fields set on a record, in ``CONTEXT_FIELDS`` order."""
    context = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            context[name] = value
    return context


class RefreshJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with a UTC timestamp, level, logger and refresh context."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record.update(record_context(record))


class ConsoleFormatter(logging.Formatter):
    """Plain text with the refresh context appended."""

    def formatMessage(self, record):
        text = super().formatMessage(record)
        context = record_context(record)
        if context:
            text += " [" + " ".join(f"{key}={value}" for key, value in context.items()) + "]"
        return text


def setup_logging(
    log_dir: Union[str, Path, None] = None,
    to_file: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        log_dir: Directory for app.log and error.log (defaults to ``settings.log_dir``)
        to_file: Write the JSON files (defaults to ``settings.log_to_file``)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    if to_file is None:
        to_file = settings.log_to_file
    if not to_file:
        return root_logger

    logs_dir = Path(log_dir or settings.log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    json_formatter = RefreshJsonFormatter(JSON_FORMAT)

    app_handler = logging.FileHandler(logs_dir / "app.log")
    app_handler.setFormatter(json_formatter)
    root_logger.addHandler(app_handler)

    error_handler = logging.FileHandler(logs_dir / "error.log")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    return root_logger


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed context to every record; ``extra`` given per call wins."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    """Logger carrying context fields such as ``retailer`` and ``product_id``."""
    return ContextAdapter(
        logging.getLogger(name),
        {key: value for key, value in context.items() if value is not None},
    )
