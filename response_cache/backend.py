"""Object-key cache engines.

Defines the ObjectKeyCache ABC and two concrete implementations:
- RedisObjectKeyCache: one Redis hash per namespace, fields are canonical
  JSON renderings of the key mapping
- InMemoryObjectKeyCache: dict-of-dicts engine for tests and single-process dev

Engines store opaque strings; serialising envelopes is the caller's job.
Failures are raised as CacheBackendError so the caller can tell "no entry"
apart from "store unreachable".

The factory get_cache_backend() selects an engine from settings: Redis when
a redis_url is configured, in-memory otherwise.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from response_cache.errors import CacheBackendError

log = structlog.get_logger(__name__)


def field_for(key: Mapping[str, Any]) -> str:
    """Render a key mapping as a canonical field name.

    Mapping keys are sorted at every depth, so two keys with the same
    content produce the same field regardless of insertion order.
    """
    return json.dumps(key, sort_keys=True, separators=(",", ":"), default=str)


class ObjectKeyCache(ABC):
    """Namespace/field cache where fields are addressed by key mappings."""

    @abstractmethod
    async def get(self, namespace: str, key: Mapping[str, Any]) -> str | None:
        """Return the stored value, or None if there is no entry."""

    @abstractmethod
    async def set(self, namespace: str, key: Mapping[str, Any], value: str) -> None:
        """Store value under (namespace, key), replacing any previous value."""

    @abstractmethod
    async def info(self) -> dict[str, Any]:
        """Return engine-specific info/stats dict."""

    async def close(self) -> None:
        """Release engine resources. No-op by default."""


# ---------------------------------------------------------------------------
# Redis engine
# ---------------------------------------------------------------------------


class RedisObjectKeyCache(ObjectKeyCache):
    """Cache engine backed by Redis hashes.

    Either wraps an existing ``redis.asyncio.Redis`` client or creates one
    lazily from ``redis_url`` on first use, so construction never blocks.
    """

    def __init__(self, client: aioredis.Redis | None = None, redis_url: str | None = None) -> None:
        if client is None and not redis_url:
            raise ValueError("RedisObjectKeyCache needs a client or a redis_url")
        self._client = client
        self._redis_url = redis_url
        self._owns_client = client is None

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def get(self, namespace: str, key: Mapping[str, Any]) -> str | None:
        field = field_for(key)
        try:
            raw = await self._get_client().hget(namespace, field)
        except RedisError as exc:
            log.warning("cache.redis.get_failed", namespace=namespace, error=str(exc))
            raise CacheBackendError(str(exc)) from exc
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    async def set(self, namespace: str, key: Mapping[str, Any], value: str) -> None:
        field = field_for(key)
        try:
            await self._get_client().hset(namespace, field, value)
        except RedisError as exc:
            log.warning("cache.redis.set_failed", namespace=namespace, error=str(exc))
            raise CacheBackendError(str(exc)) from exc

    async def info(self) -> dict[str, Any]:
        try:
            redis_info = await self._get_client().info()
            return {
                "backend": "redis",
                "connected": True,
                "used_memory_human": redis_info.get("used_memory_human", "unknown"),
                "keyspace_hits": redis_info.get("keyspace_hits", 0),
                "keyspace_misses": redis_info.get("keyspace_misses", 0),
            }
        except RedisError as exc:
            return {
                "backend": "redis",
                "connected": False,
                "error": str(exc),
            }

    async def close(self) -> None:
        """Close the connection pool if this engine created the client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# In-memory engine (testing / dev fallback)
# ---------------------------------------------------------------------------


class InMemoryObjectKeyCache(ObjectKeyCache):
    """Dict-backed engine.

    Guarded by an asyncio.Lock. Entries never expire on their own; the
    response cache detects staleness from the envelope. Does NOT persist
    across process restarts.
    """

    def __init__(self) -> None:
        self._store: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()
        self._hits: int = 0
        self._misses: int = 0

    async def get(self, namespace: str, key: Mapping[str, Any]) -> str | None:
        field = field_for(key)
        async with self._lock:
            value = self._store.get(namespace, {}).get(field)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    async def set(self, namespace: str, key: Mapping[str, Any], value: str) -> None:
        if not isinstance(value, str):
            raise CacheBackendError(f"values must be strings, got {type(value).__name__}")
        field = field_for(key)
        async with self._lock:
            self._store.setdefault(namespace, {})[field] = value

    async def info(self) -> dict[str, Any]:
        async with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = self._hits / total_requests if total_requests > 0 else 0.0
            return {
                "backend": "memory",
                "connected": True,
                "namespaces": len(self._store),
                "total_keys": sum(len(fields) for fields in self._store.values()),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 4),
            }


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_cache_backend(settings: Any) -> ObjectKeyCache:
    """Return the cache engine selected by settings.

    Args:
        settings: Settings instance (anything with a ``redis_url`` attribute).

    Returns:
        RedisObjectKeyCache when redis_url is set, otherwise InMemoryObjectKeyCache.
    """
    redis_url: str = getattr(settings, "redis_url", "") or ""

    if redis_url:
        log.info("cache.backend_selected", backend="redis", url=redis_url.split("@")[-1])
        return RedisObjectKeyCache(redis_url=redis_url)

    log.info("cache.backend_selected", backend="memory")
    return InMemoryObjectKeyCache()
