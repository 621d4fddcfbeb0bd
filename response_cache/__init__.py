"""HTTP response caching middleware.

Public API:
    ResponseCache           - Lookup (handler) and store stages
    ResponseCacheMiddleware - FastAPI/Starlette middleware running both stages
    ResponseCacheConfig     - Per-instance options (expire, ignore_* flags, hooks)

    CachedResponse          - Headers/status/body unit written to the cache
    CacheDecision           - HIT / MISS / BYPASS outcomes of a lookup
    CacheLookup             - Decision plus the response to serve on a HIT
    RequestCacheState       - Per-request flags on request.state.response_cache

    ObjectKeyCache          - Abstract namespace/field cache engine
    InMemoryObjectKeyCache  - Dict-backed engine for dev/testing
    RedisObjectKeyCache     - Redis hash engine
    get_cache_backend       - Factory: selects engine from settings
"""

from response_cache.backend import (
    InMemoryObjectKeyCache,
    ObjectKeyCache,
    RedisObjectKeyCache,
    get_cache_backend,
)
from response_cache.cache import ResponseCache
from response_cache.config import ResponseCacheConfig, Settings, get_settings
from response_cache.errors import (
    CacheBackendError,
    CacheReadError,
    CacheWriteError,
    ConfigurationError,
    ResponseCacheError,
)
from response_cache.middleware import ResponseCacheMiddleware
from response_cache.models import CachedResponse, CacheDecision, CacheLookup, RequestCacheState

__all__ = [
    "ResponseCache",
    "ResponseCacheMiddleware",
    "ResponseCacheConfig",
    "Settings",
    "get_settings",
    "CachedResponse",
    "CacheDecision",
    "CacheLookup",
    "RequestCacheState",
    "ObjectKeyCache",
    "InMemoryObjectKeyCache",
    "RedisObjectKeyCache",
    "get_cache_backend",
    "ResponseCacheError",
    "ConfigurationError",
    "CacheBackendError",
    "CacheReadError",
    "CacheWriteError",
]
