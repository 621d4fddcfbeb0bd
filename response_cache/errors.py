"""Exception hierarchy for the response cache.

ConfigurationError is raised synchronously at construction time.
CacheBackendError is raised by cache engines on transport or parse errors.
The ResponseCache wraps those into CacheReadError (logged, recovered as a
MISS) and CacheWriteError (raised to the host framework).
"""

from __future__ import annotations


class ResponseCacheError(Exception):
    """Base class for all response cache errors."""


class ConfigurationError(ResponseCacheError, ValueError):
    """Raised when the cache is constructed with a bad namespace or engine."""


class CacheBackendError(ResponseCacheError):
    """Raised by an ObjectKeyCache when the underlying store fails."""


class CacheReadError(ResponseCacheError):
    """A cache lookup failed. Never escapes ResponseCache.handler()."""

    def __init__(self, namespace: str, message: str) -> None:
        self.namespace = namespace
        super().__init__(f"cache read failed in namespace {namespace!r}: {message}")


class CacheWriteError(ResponseCacheError):
    """Storing a response failed. Surfaced to the host framework."""

    def __init__(self, namespace: str, message: str) -> None:
        self.namespace = namespace
        super().__init__(f"cache write failed in namespace {namespace!r}: {message}")
