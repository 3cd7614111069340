"""
Structured Logging Configuration for Debrid-Link Blackhole
Provides JSON or colored console logging, optional log rotation, and context fields.
"""

import json
import logging
import logging.handlers
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

# Attributes every LogRecord carries; anything else was passed as context.
_RECORD_ATTRIBUTES = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message", "asctime",
))


class ContextFilter(logging.Filter):
    """
    Add context fields to log records.
    Allows setting per-torrent or per-file context.
    """

    _local = threading.local()

    @classmethod
    def set_context(cls, **kwargs) -> None:
        """Set context fields for subsequent log messages in this thread."""
        if not hasattr(cls._local, "context"):
            cls._local.context = {}
        cls._local.context.update(kwargs)

    @classmethod
    def clear_context(cls, *keys) -> None:
        """Clear specific context fields or all if no keys specified."""
        if not hasattr(cls._local, "context"):
            return
        if keys:
            for key in keys:
                cls._local.context.pop(key, None)
        else:
            cls._local.context.clear()

    @classmethod
    def get_context(cls) -> Dict[str, Any]:
        if not hasattr(cls._local, "context"):
            return {}
        return dict(cls._local.context)

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.get_context().items():
            setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """
    Format logs as JSON lines.
    Includes timestamp, level, logger name, message, and context fields.
    """

    CONTEXT_FIELDS = [
        "torrent_id",
        "torrent_name",
        "file_name",
        "url",
    ]

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
            log_obj["exception_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        if self.include_extra:
            for key, value in record.__dict__.items():
                if (
                    key in log_obj
                    or key in self.CONTEXT_FIELDS
                    or key.startswith("_")
                    or key in _RECORD_ATTRIBUTES
                ):
                    continue
                try:
                    json.dumps(value)
                    log_obj[key] = value
                except (TypeError, ValueError):
                    log_obj[key] = str(value)

        return json.dumps(log_obj, default=str)


class ColoredFormatter(logging.Formatter):
    """
    Colored console formatter for better readability.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    SUFFIX_FIELDS = ("torrent_name", "file_name")

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            if color:
                message = message.replace(
                    record.levelname,
                    f"{color}{record.levelname}{self.RESET}",
                    1
                )

        context_parts = []
        for field in self.SUFFIX_FIELDS:
            value = getattr(record, field, None)
            if value:
                context_parts.append(f"{field}={value}")

        if context_parts:
            message += f" [{', '.join(context_parts)}]"

        return message


# Component-specific log levels
COMPONENT_LOG_LEVELS = {
    "aiohttp": "WARNING",
    "aiohttp.client": "WARNING",
    "asyncio": "WARNING",
}


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = "text",
    max_file_size_mb: int = 10,
    backup_count: int = 5,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure logging with optional file rotation and structured output.

    Args:
        log_level: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (enables rotation if set)
        log_format: "text" for human-readable, "json" for structured
        max_file_size_mb: Maximum size of each log file before rotation
        backup_count: Number of rotated log files to keep
        use_colors: Use colored output in console (if terminal supports it)

    Returns:
        The configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    context_filter = ContextFilter()

    # stdout is reserved for printed links, logs go to stderr
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.addFilter(context_filter)

    if log_format == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.addFilter(context_filter)

        if log_format == "json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))

        root_logger.addHandler(file_handler)

    for logger_name, level in COMPONENT_LOG_LEVELS.items():
        logging.getLogger(logger_name).setLevel(getattr(logging, level))

    logging.getLogger(__name__).debug(
        f"Logging configured: level={log_level}, format={log_format}, "
        f"file={log_file or 'none'}"
    )

    return root_logger


class LogContext:
    """
    Context manager for setting log context fields.

    Usage:
        with LogContext(torrent_id="abc123", file_name="Movie.mkv"):
            logger.info("Downloading file")
    """

    def __init__(self, **kwargs):
        self.context = {key: value for key, value in kwargs.items() if value is not None}
        self.previous_context = {}

    def __enter__(self):
        self.previous_context = ContextFilter.get_context()
        ContextFilter.set_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        ContextFilter.clear_context()
        if self.previous_context:
            ContextFilter.set_context(**self.previous_context)
        return False
