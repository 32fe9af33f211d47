"""Observability module for the tracking cache.

Provides JSON and console structured logging with tracking session context.
"""

from tracking_cache.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    configure_logging,
    operation_var,
    session_id_var,
)

__all__ = [
    "configure_logging",
    "ConsoleFormatter",
    "JsonFormatter",
    "LogContext",
    "operation_var",
    "session_id_var",
]
