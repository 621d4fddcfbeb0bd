"""Telemetry package: structured logging and request correlation."""

from __future__ import annotations

from response_cache.telemetry.logging import (
    RequestIdMiddleware,
    bind_cache_context,
    clear_context,
    configure_logging,
    render_cache_decision,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_cache_context",
    "clear_context",
    "configure_logging",
    "render_cache_decision",
]
