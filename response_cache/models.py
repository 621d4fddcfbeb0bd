"""Value types shared by the lookup and store stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class CacheDecision(StrEnum):
    """Outcome of ResponseCache.handler()."""

    BYPASS_NO_CACHE_HEADER = "bypass_no_cache_header"
    BYPASS_NON_GET = "bypass_non_get"
    MISS_EMPTY = "miss_empty"
    MISS_NO_EXPIRATION = "miss_no_expiration"
    MISS_EXPIRED = "miss_expired"
    MISS_ERROR = "miss_error"
    HIT = "hit"

    @property
    def is_hit(self) -> bool:
        return self is CacheDecision.HIT


@dataclass
class CachedResponse:
    """Response headers, status and JSON object body.

    This is the unit written to and read from the cache. ``body["cache"]``
    carries the envelope metadata: time, timestamp and cacheExpiration.
    """

    headers: dict[str, str] = field(default_factory=dict)
    status: int = 200
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def cache_expiration(self) -> int | None:
        meta = self.body.get("cache")
        if not isinstance(meta, dict):
            return None
        value = meta.get("cacheExpiration")
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def to_envelope(self) -> dict[str, Any]:
        return {
            "headers": dict(self.headers),
            "status": self.status,
            "body": self.body,
        }

    @classmethod
    def from_envelope(cls, data: dict[str, Any]) -> CachedResponse:
        """Build from a decoded envelope.

        Raises:
            TypeError: the envelope or its body is not a JSON object.
        """
        if not isinstance(data, dict):
            raise TypeError(f"cache envelope must be an object, got {type(data).__name__}")
        body = data.get("body")
        if not isinstance(body, dict):
            raise TypeError("cache envelope body must be an object")
        return cls(
            headers=dict(data.get("headers") or {}),
            status=int(data.get("status") or 200),
            body=body,
        )


@dataclass
class RequestCacheState:
    """Per-request flags, stored as ``request.state.response_cache``."""

    needs_cache: bool = False
    used_cache: bool = False
    cache_key: dict[str, Any] | None = None
    has_data: bool = False


@dataclass
class CacheLookup:
    decision: CacheDecision
    response: CachedResponse | None = None
