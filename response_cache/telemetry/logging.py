"""Structured logging configuration.

Configures structlog with JSON output in production and a console renderer
in development, plus request-id and cache-namespace correlation.

Log format (production):
    {
        "timestamp": "2026-10-19T10:30:45.123456Z",
        "level": "debug",
        "event": "response_cache.hit",
        "logger": "response_cache.cache",
        "request_id": "req_789...",
        "cache_namespace": "responses",
        "decision": "hit",
        "cache_hit": true,
        "path": "/items/7"
    }
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from response_cache.models import CacheDecision


def render_cache_decision(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Flatten a CacheDecision into its value plus a ``cache_hit`` flag.

    Lets log queries filter hits and misses without knowing every
    decision name.
    """
    decision = event_dict.get("decision")
    if isinstance(decision, CacheDecision):
        event_dict["decision"] = decision.value
        event_dict["cache_hit"] = decision.is_hit
    return event_dict


def _renderer(json_logs: bool) -> list[Processor]:
    if json_logs:
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.RichTracebackFormatter(),
        ),
    ]


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Raises:
        ValueError: unknown log level name.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"unknown log level: {log_level!r}")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        render_cache_decision,
        structlog.processors.StackInfoRenderer(),
        *_renderer(json_logs),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Request ID Middleware
# ------------------------------------------------------------------ #


class RequestIdMiddleware:
    """Pure ASGI middleware that tags each request with a request_id.

    The id is bound into structlog's context variables, so every cache
    log line for the request carries it, and is echoed back as the
    ``x-request-id`` response header.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = f"req_{uuid.uuid4().hex[:16]}"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_cache_context(namespace: str) -> None:
    """Bind the cache namespace to the log context for this request."""
    structlog.contextvars.bind_contextvars(cache_namespace=namespace)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
