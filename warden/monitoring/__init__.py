"""Logging configuration and request context."""

from warden.monitoring.logging import (
    LoggingContextMiddleware,
    bind_context,
    clear_context,
    configure_logging,
    log_duration,
)

__all__ = [
    "LoggingContextMiddleware",
    "bind_context",
    "clear_context",
    "configure_logging",
    "log_duration",
]
