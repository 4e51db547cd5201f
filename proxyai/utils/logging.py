# proxyai/utils/logging.py
"""
Logging helpers for proxyai.

Library modules log through plain ``logging.getLogger(__name__)`` loggers.
This module decides how those records are rendered and where they go, and
adds three request-oriented helpers:

- ``ContextLogger``: attaches per-thread request context (endpoint, attempt)
  to every record it emits
- ``log_operation``: logs the start, completion or failure of a request with
  its duration
- ``redact``: masks partial keys and tokens before they reach a log line

Handlers are only ever attached to the ``proxyai`` logger, so an application
embedding the client keeps full control of its root logger.
"""

import json
import logging
import sys
import threading
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

PACKAGE_LOGGER = "proxyai"

# Fields attached by ContextLogger and log_operation
REQUEST_FIELDS = ("session_id", "endpoint", "attempt", "operation", "status", "duration")

DEFAULT_LOG_FILE = Path.home() / ".proxyai" / "logs" / "proxyai.log"


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record, for log shippers.

    Request fields are promoted to top-level keys when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in REQUEST_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value if isinstance(value, (int, float, str, bool)) else str(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


class ContextFormatter(logging.Formatter):
    """Plain-text formatter that prefixes the request context, e.g. ``[endpoint=chat/completions attempt=2]``."""

    LABELS = (("session_id", "session"), ("endpoint", "endpoint"), ("attempt", "attempt"))

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        parts = [
            f"{label}={getattr(record, name)}"
            for name, label in self.LABELS
            if getattr(record, name, None) is not None
        ]
        if not parts:
            return text
        # Prefix after the level/name header so grep on the header still works
        head, sep, message = text.partition(": ")
        return f"{head}{sep}[{' '.join(parts)}] {message}"


_FORMATTERS = {
    "json": JSONFormatter,
    "context": ContextFormatter,
    "simple": lambda: logging.Formatter("%(levelname)s %(name)s: %(message)s"),
}


class OperationStats(logging.Filter):
    """
    Aggregates request durations reported through ``log_operation``.

    Installed on the package handlers; it never drops a record.
    """

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self._stats: Dict[str, Dict[str, float]] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        operation = getattr(record, "operation", None)
        duration = getattr(record, "duration", None)
        if operation is None or duration is None:
            return True

        with self._lock:
            entry = self._stats.setdefault(
                operation, {"count": 0, "failures": 0, "total_time": 0.0, "max_time": 0.0}
            )
            entry["count"] += 1
            entry["total_time"] += duration
            entry["max_time"] = max(entry["max_time"], duration)
            if getattr(record, "status", None) == "error":
                entry["failures"] += 1
        return True

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                operation: {**entry, "avg_time": entry["total_time"] / entry["count"]}
                for operation, entry in self._stats.items()
            }

    def reset(self):
        with self._lock:
            self._stats.clear()


class ContextLogger:
    """
    Wrapper around a stdlib logger that injects per-thread context.

    Requests issued concurrently from several threads share one
    ``ContextLogger``; each thread sees only the context it set.

    Example:
        >>> log = get_logger(__name__)
        >>> with log.context(endpoint="chat/completions", attempt=1):
        ...     log.debug("sending")
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self._local = threading.local()

    def _current(self) -> Dict[str, Any]:
        if not hasattr(self._local, "values"):
            self._local.values = {}
        return self._local.values

    def debug(self, msg: str, **fields):
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields):
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields):
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, **fields):
        self._log(logging.ERROR, msg, **fields)

    def _log(self, level: int, msg: str, **fields):
        if self.logger.isEnabledFor(level):
            self.logger.log(level, msg, extra={**self._current(), **fields})

    @contextmanager
    def context(self, **values):
        """Attach ``values`` to every record logged by this thread inside the block."""
        current = self._current()
        saved = {key: current[key] for key in values if key in current}
        current.update(values)
        try:
            yield
        finally:
            for key in values:
                current.pop(key, None)
            current.update(saved)

    def get_context(self) -> Dict[str, Any]:
        return dict(self._current())


class _PackageLogging:
    """Owns the handlers installed on the ``proxyai`` logger."""

    def __init__(self):
        self._loggers: Dict[str, ContextLogger] = {}
        self._handlers: Dict[str, logging.Handler] = {}
        self._lock = threading.Lock()
        self.stats = OperationStats()

    def get_logger(self, name: str) -> ContextLogger:
        with self._lock:
            if name not in self._loggers:
                self._loggers[name] = ContextLogger(name)
            return self._loggers[name]

    def configure(
        self,
        level: str = "WARNING",
        format_type: str = "context",
        log_to_file: bool = False,
        log_file: Optional[str] = None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 3,
        console_output: bool = True
    ):
        """
        Replace the package handlers.

        Args:
            level: Level name for the package logger and its handlers
            format_type: "context", "json" or "simple"
            log_to_file: Also write to a rotating file
            log_file: File path (defaults to ~/.proxyai/logs/proxyai.log)
            max_bytes: Size at which the file is rotated
            backup_count: Rotated files to keep
            console_output: Write to stderr
        """
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            numeric_level = logging.WARNING

        package_logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.setLevel(numeric_level)

        for name in list(self._handlers):
            package_logger.removeHandler(self._handlers.pop(name))

        formatter = _FORMATTERS.get(format_type, ContextFormatter)()

        handlers: Dict[str, logging.Handler] = {}
        if console_output:
            handlers["console"] = logging.StreamHandler(sys.stderr)
        if log_to_file:
            path = Path(log_file) if log_file else DEFAULT_LOG_FILE
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers["file"] = RotatingFileHandler(
                str(path), maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )

        for name, handler in handlers.items():
            handler.setLevel(numeric_level)
            handler.setFormatter(formatter)
            handler.addFilter(self.stats)
            package_logger.addHandler(handler)
            self._handlers[name] = handler

    def set_level(self, level: str):
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            raise ValueError(f"Unknown log level: {level}")
        logging.getLogger(PACKAGE_LOGGER).setLevel(numeric_level)
        for handler in self._handlers.values():
            handler.setLevel(numeric_level)


_package_logging = _PackageLogging()


def configure_logging(**kwargs):
    """Configure the package handlers; see ``_PackageLogging.configure``."""
    _package_logging.configure(**kwargs)


def get_logger(name: str) -> ContextLogger:
    """Shared ``ContextLogger`` for ``name``."""
    return _package_logging.get_logger(name)


def set_log_level(level: str):
    """
    Change the package log level without replacing handlers.

    Example:
        >>> import proxyai
        >>> proxyai.set_log_level("DEBUG")
    """
    _package_logging.set_level(level)


def get_performance_stats() -> Dict[str, Dict[str, float]]:
    """Per-operation request counts, failures and durations seen by the package handlers."""
    return _package_logging.stats.snapshot()


def reset_performance_stats():
    _package_logging.stats.reset()


def redact(secret: Optional[str], visible: int = 4) -> str:
    """
    Mask a secret for display, keeping only its last few characters.

    Example:
        >>> redact("pk-1234567890")
        '*********7890'
    """
    if not secret:
        return "<none>"
    if len(secret) <= visible:
        return "*" * len(secret)
    return "*" * (len(secret) - visible) + secret[-visible:]


@contextmanager
def log_operation(operation: str, logger: ContextLogger, level: str = "DEBUG", **fields):
    """
    Log the start and outcome of an operation with its duration.

    Exceptions are logged at WARNING and re-raised unchanged.

    Args:
        operation: Operation name, e.g. "fetch_one"
        logger: Logger from ``get_logger``
        level: Level of the start and completion records
        **fields: Extra fields attached to every record

    Example:
        >>> with log_operation("fetch_one", log, endpoint="models"):
        ...     response = session.send(prepared)
        # Starting fetch_one / Completed fetch_one in 0.21s
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.DEBUG
    started = time.perf_counter()

    logger._log(numeric_level, f"Starting {operation}", operation=operation, **fields)
    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - started
        logger._log(
            logging.WARNING,
            f"Failed {operation} after {duration:.2f}s: {e}",
            operation=operation,
            duration=duration,
            status="error",
            error_type=type(e).__name__,
            **fields
        )
        raise
    duration = time.perf_counter() - started
    logger._log(
        numeric_level,
        f"Completed {operation} in {duration:.2f}s",
        operation=operation,
        duration=duration,
        status="success",
        **fields
    )
