"""Structured logging configuration."""

import logging
import sys
from datetime import datetime
from pathlib import Path

from pythonjsonlogger import jsonlogger

from realprice.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with timestamp, level and source location fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"

        if record.funcName:
            log_record['function'] = record.funcName


def setup_logging(log_dir: str | Path | None = None):
    """Configure logging for the application.

    Args:
        log_dir: Directory for JSON log files. Falls back to
                 settings.log_dir; when both are empty only the console
                 handler is installed.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    # Console handler (human-readable for development)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    target_dir = log_dir or settings.log_dir
    if target_dir:
        logs_dir = Path(target_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)

        json_formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s"
        )

        json_handler = logging.FileHandler(logs_dir / "app.log")
        json_handler.setLevel(logging.DEBUG)
        json_handler.setFormatter(json_formatter)
        root_logger.addHandler(json_handler)

        error_handler = logging.FileHandler(logs_dir / "error.log")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(json_formatter)
        root_logger.addHandler(error_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return root_logger



class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context fields to log records."""

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger with optional context fields.

    Args:
        name: Logger name (usually __name__)
        **context: Additional context fields (e.g., user_id='u1', store_id='s1')

    Returns:
        LoggerAdapter with context
    """
    logger = logging.getLogger(name)
    return LoggerAdapter(logger, context)
