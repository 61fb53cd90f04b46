"""
FeedLens Logging Configuration
==============================

Structured logging setup shared by the queue workers, the CLI and the
analysis components.
"""

import logging
import logging.handlers
import sys
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "taskName",
    }
)


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        # Surface job/entry context inline so worker output stays readable
        tags = []
        for key in ("queue", "job_id", "entry_id"):
            value = getattr(record, key, None)
            if value is not None:
                tags.append(f"{key}={value}")
        suffix = f" ({', '.join(tags)})" if tags else ""

        formatted = (
            f"{color}[{timestamp}] {record.levelname:8}{reset} "
            f"{record.name} - {record.getMessage()}{suffix}"
        )

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logger(
    name: str = "feedlens",
    level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True,
    structured: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Set up logger with appropriate handlers and formatting.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        console: Whether to log to console
        structured: Whether to use structured JSON logging on the console
        max_file_size: Maximum log file size in bytes
        backup_count: Number of rotated log files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        if structured:
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(ColoredConsoleFormatter())
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_file_size, backupCount=backup_count, encoding="utf-8"
        )
        # File output is always JSON
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    return logger


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges component context into every record."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple:
        if "extra" in kwargs:
            merged = dict(self.extra)
            merged.update(kwargs["extra"])
            kwargs["extra"] = merged
        else:
            kwargs["extra"] = dict(self.extra)
        return msg, kwargs

    def bind(self, **context: Any) -> "LoggerAdapter":
        """Return a child adapter carrying additional context."""
        merged = dict(self.extra)
        merged.update({k: v for k, v in context.items() if v is not None})
        return LoggerAdapter(self.logger, merged)


def get_logger_for_component(
    component_name: str,
    queue: Optional[str] = None,
    entry_id: Optional[str] = None,
    job_id: Optional[int] = None,
) -> LoggerAdapter:
    """Get a logger adapter with component-specific context.

    Args:
        component_name: Name of the component (e.g., 'queue', 'rules')
        queue: Queue name the component works on (optional)
        entry_id: Associated entry ID (optional)
        job_id: Associated job ID (optional)

    Returns:
        Logger adapter with context
    """
    base_logger = logging.getLogger(f"feedlens.{component_name}")

    extra_context: Dict[str, Any] = {"component": component_name}
    if queue:
        extra_context["queue"] = queue
    if entry_id:
        extra_context["entry_id"] = entry_id
    if job_id is not None:
        extra_context["job_id"] = job_id

    return LoggerAdapter(base_logger, extra_context)


def configure_application_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = "logs/feedlens.log",
    enable_console: bool = True,
    structured_logging: bool = False,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """Configure application-wide logging settings."""
    setup_logger(
        name="feedlens",
        level=log_level,
        log_file=log_file,
        console=enable_console,
        structured=structured_logging,
        max_file_size=max_file_size_mb * 1024 * 1024,
        backup_count=backup_count,
    )

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sqlite3").setLevel(logging.WARNING)


class PerformanceLogger:
    """Context manager for performance logging."""

    def __init__(self, logger: logging.Logger, operation: str, **kwargs):
        """Initialize performance logger.

        Args:
            logger: Logger instance
            operation: Operation being timed
            **kwargs: Additional context for the operation
        """
        self.logger = logger
        self.operation = operation
        self.context = kwargs
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[int] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.debug(f"Starting {self.operation}", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        duration = time.perf_counter() - self.start_time
        self.duration_ms = int(duration * 1000)
        context = {
            **self.context,
            "duration_seconds": duration,
            "success": exc_type is None,
        }

        if exc_type:
            self.logger.error(f"Failed {self.operation} in {duration:.3f}s", extra=context)
        else:
            self.logger.info(
                f"Completed {self.operation} in {duration:.3f}s", extra=context
            )
