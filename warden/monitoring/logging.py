"""
Warden - Structured Logging

structlog configuration shared by the API process and scripts.

- JSON output for production, console output for development
- Per-request correlation IDs bound through context variables
- Credential-bearing keys redacted before rendering
"""

from __future__ import annotations

import logging
import re
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from structlog.typing import EventDict, WrappedLogger

from warden import __version__

REDACTED = "[REDACTED]"

# Substring match against lower-cased keys
SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "bearer",
    "cookie",
    "private_key",
    "signing_key",
    "digest",
)

# Keys that contain a fragment above but only ever carry metadata
SAFE_KEYS = frozenset({"token_type", "token_kind"})

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")

_LEVEL_NUMBERS = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
    "critical": 50,
}


# =============================================================================
# Custom Processors
# =============================================================================

def add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["service"] = "warden"
    event_dict["version"] = __version__
    return event_dict


def add_level_number(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["level_number"] = _LEVEL_NUMBERS.get(method_name, 20)
    return event_dict


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    if lowered in SAFE_KEYS:
        return False
    return any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)


def _sanitize(obj: Any, depth: int = 0) -> Any:
    if depth > 10:
        return obj
    if isinstance(obj, dict):
        return {
            k: REDACTED if _is_sensitive(k) else _sanitize(v, depth + 1)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [_sanitize(item, depth + 1) for item in obj]
    return obj


def sanitize_sensitive_data(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Redact values whose key names a credential."""
    result: EventDict = _sanitize(event_dict)
    return result


def drop_color_codes(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    def _clean(obj: Any) -> Any:
        if isinstance(obj, str):
            return _ANSI_ESCAPE.sub("", obj)
        if isinstance(obj, dict):
            return {k: _clean(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [_clean(item) for item in obj]
        return obj

    result: EventDict = _clean(event_dict)
    return result


# =============================================================================
# Logging Configuration
# =============================================================================

def build_processors(
    json_output: bool = False,
    include_timestamps: bool = True,
    include_service_info: bool = True,
    sanitize_logs: bool = True,
) -> list[Any]:
    """Processor chain used by ``configure_logging``."""
    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.contextvars.merge_contextvars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_level_number,
    ]

    if include_timestamps:
        processors.insert(0, add_timestamp)
    if include_service_info:
        processors.insert(0, add_service_info)
    if sanitize_logs:
        processors.append(sanitize_sensitive_data)

    if json_output:
        processors.append(drop_color_codes)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    include_timestamps: bool = True,
    include_service_info: bool = True,
    sanitize_logs: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON format (for production)
        include_timestamps: Add timestamps to logs
        include_service_info: Add service name/version
        sanitize_logs: Redact credential-bearing keys
    """
    structlog.configure(
        processors=build_processors(
            json_output=json_output,
            include_timestamps=include_timestamps,
            include_service_info=include_service_info,
            sanitize_logs=sanitize_logs,
        ),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    # Third-party chatter
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("neo4j").setLevel(logging.WARNING)


# =============================================================================
# Context Management
# =============================================================================

def bind_context(**kwargs: Any) -> None:
    """Bind context variables that will appear in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Request Context Middleware
# =============================================================================

class LoggingContextMiddleware:
    """
    ASGI middleware binding request context to every log line.

    Binds ``correlation_id`` (from ``X-Correlation-ID`` or generated),
    ``path`` and ``method``, echoes the correlation id in the response
    headers, and clears the context when the request finishes.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        correlation_id = headers.get(b"x-correlation-id", b"").decode()[:128] or str(uuid4())

        bind_context(
            correlation_id=correlation_id,
            path=scope.get("path", ""),
            method=scope.get("method", ""),
        )

        async def send_with_correlation(message: Any) -> None:
            if message["type"] == "http.response.start":
                response_headers = list(message.get("headers", []))
                response_headers.append((b"x-correlation-id", correlation_id.encode()))
                message["headers"] = response_headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_correlation)
        finally:
            clear_context()


# =============================================================================
# Performance Logging
# =============================================================================

@contextmanager
def log_duration(
    logger: Any,
    operation: str,
    level: str = "info",
    **extra_context: Any,
) -> Iterator[None]:
    """
    Log how long a block took.

    Usage:
        with log_duration(logger, "schema_setup"):
            await schema.ensure_schema()
    """
    start_time = time.monotonic()
    log_method = getattr(logger, level)

    try:
        yield
    except Exception as e:
        duration_ms = (time.monotonic() - start_time) * 1000
        logger.error(
            f"{operation}_failed",
            duration_ms=round(duration_ms, 2),
            error=str(e),
            **extra_context,
        )
        raise
    duration_ms = (time.monotonic() - start_time) * 1000
    log_method(
        f"{operation}_completed",
        duration_ms=round(duration_ms, 2),
        **extra_context,
    )


__all__ = [
    "LoggingContextMiddleware",
    "bind_context",
    "build_processors",
    "clear_context",
    "configure_logging",
    "log_duration",
    "sanitize_sensitive_data",
]
