"""
Structured Logging Configuration for ReelStage

Provides JSON-formatted log output, a plain-text formatter for local
development, Uvicorn logger integration, and a LoggerAdapter helper that
attaches request context (video_id, user_id, stage) to every record emitted
while a video is being staged.

Usage:
    from app.utils.logger import add_log_context, setup_logging

    setup_logging(log_level="INFO", json_logs=True)

    ctx_logger = add_log_context(logger, video_id="...", user_id="...")
    ctx_logger.info("Probing staged file")
"""

import json
import logging
import sys
import traceback

from datetime import UTC, datetime
from typing import Any


# =============================================================================
# Constants
# =============================================================================

LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Third-party loggers kept quiet unless explicitly raised
THIRD_PARTY_LOGGERS: list[str] = [
    "motor",
    "pymongo",
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3",
    "httpx",
    "httpcore",
    "multipart",
    "asyncio",
]

UVICORN_LOGGERS: tuple[str, ...] = ("uvicorn", "uvicorn.access", "uvicorn.error")


class LogJSONEncoder(json.JSONEncoder):
    """JSON encoder that never fails on the odd object found in ``extra``."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace")
        if isinstance(obj, set | frozenset):
            return sorted(obj, key=str)
        return str(obj)


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON objects.

    Extra fields passed through ``extra={...}`` or a context adapter are
    collected under an ``extra`` key so log aggregators can index them.

    Example output:
        {"timestamp": "2025-01-15T10:30:45.123456+00:00", "level": "INFO",
         "logger": "app.services.staging_service", "message": "Video staged",
         "extra": {"video_id": "...", "object_key": "landscape/..."}}
    """

    # Standard LogRecord attributes to exclude from extra fields
    RESERVED_ATTRS: frozenset[str] = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "thread",
            "threadName",
            "taskName",
            "color_message",
        }
    )

    def __init__(self, include_source_location: bool = False) -> None:
        super().__init__()
        self.include_source_location = include_source_location

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="microseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_source_location:
            log_entry["source"] = {
                "filename": record.filename,
                "lineno": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc_value) if exc_value else "",
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in self.RESERVED_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, cls=LogJSONEncoder, ensure_ascii=False, separators=(",", ":"))


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    DEFAULT_FORMAT: str = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
    DEFAULT_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(
            fmt=fmt or self.DEFAULT_FORMAT,
            datefmt=datefmt or self.DEFAULT_DATE_FORMAT,
        )


# =============================================================================
# Application Logging Setup
# =============================================================================


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    third_party_level: str = "WARNING",
) -> None:
    """
    Configure application-wide logging.

    Installs a single stdout handler on the root logger, routes Uvicorn's
    loggers through the same formatter, and lowers the verbosity of
    third-party libraries. Call once from the FastAPI lifespan.

    Args:
        log_level: Application log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON; otherwise use the plain-text format
        third_party_level: Level applied to noisy third-party loggers
    """
    level_str = log_level.upper()
    level = LOG_LEVEL_MAP.get(level_str, logging.INFO)

    if json_logs:
        formatter: logging.Formatter = JSONFormatter(
            include_source_location=level <= logging.DEBUG,
        )
    else:
        formatter = StandardFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.setLevel(level)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    third_party_log_level = LOG_LEVEL_MAP.get(third_party_level.upper(), logging.WARNING)
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_log_level)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s json=%s", level_str, json_logs
    )


# =============================================================================
# Context Enrichment
# =============================================================================


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that merges its context into each call's ``extra`` dict.

    The stock adapter replaces ``extra`` wholesale; this one keeps any
    per-call fields and only fills in context keys that are missing.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        for key, value in self.extra.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


def add_log_context(logger: logging.Logger, **kwargs: Any) -> ContextLoggerAdapter:
    """
    Wrap ``logger`` so every record carries the given context fields.

    Example:
        ctx_logger = add_log_context(logger, video_id=video.id, user_id=user_id)
        ctx_logger.info("Remux finished", extra={"output": path})
    """
    return ContextLoggerAdapter(logger, kwargs)
