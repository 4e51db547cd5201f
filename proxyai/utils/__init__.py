# proxyai/utils/__init__.py
"""Utility helpers for proxyai."""

from .logging import (
    configure_logging, get_logger, set_log_level, get_performance_stats,
    reset_performance_stats, log_operation, redact
)

__all__ = [
    "configure_logging",
    "get_logger",
    "set_log_level",
    "get_performance_stats",
    "reset_performance_stats",
    "log_operation",
    "redact",
]
