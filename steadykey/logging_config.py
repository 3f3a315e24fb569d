"""
Structured logging configuration for steadykey.

Provides JSON-formatted logs with trace_id support, where the trace_id is
the storage key a log line is about.

Environment Variables:
    STEADYKEY_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR) - default: INFO
    STEADYKEY_LOG_FORMAT: Log format (json, text) - default: json

Usage:
    from steadykey.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__, trace_id="idempotency:3f2a...")
    logger.info("Registered payload")

Library modules only call get_logger(); handlers are installed by the
application via setup_logging().
"""

import logging
import os
import sys
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

# The S3 adapter's client stack logs every request at DEBUG.
S3_CLIENT_LOGGERS = ("boto3", "botocore", "urllib3")


def _formatter(log_format: str) -> logging.Formatter:
    if log_format == "text":
        return logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s [trace_id=%(trace_id)s]",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    return JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s %(trace_id)s",
        rename_fields={
            "asctime": "timestamp",
            "name": "logger",
            "levelname": "level",
        },
    )


def setup_logging() -> logging.Handler:
    """
    Install a single stdout handler on the root logger.

    Unknown STEADYKEY_LOG_LEVEL values fall back to INFO, and any
    STEADYKEY_LOG_FORMAT other than "text" produces JSON.

    Returns:
        The installed handler
    """
    level = LOG_LEVELS.get(os.getenv("STEADYKEY_LOG_LEVEL", "INFO").upper(), logging.INFO)
    log_format = os.getenv("STEADYKEY_LOG_FORMAT", "json").lower()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(TraceIDFilter())
    handler.setFormatter(_formatter(log_format))
    root_logger.addHandler(handler)

    for name in S3_CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return handler


def get_logger(name: str, trace_id: Optional[str] = None) -> logging.LoggerAdapter:
    """
    Get a logger with optional trace_id for correlation.

    Args:
        name: Logger name (typically __name__)
        trace_id: Storage key the messages refer to

    Returns:
        LoggerAdapter with trace_id in extra fields
    """
    return logging.LoggerAdapter(logging.getLogger(name), {"trace_id": trace_id or "N/A"})


class TraceIDFilter(logging.Filter):
    """Fills trace_id with "N/A" on records logged without get_logger()."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "trace_id"):
            record.trace_id = "N/A"  # type: ignore
        return True
