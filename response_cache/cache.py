"""ResponseCache - lookup and store stages of the HTTP response cache.

The two stages share one cache engine and one configuration:

    lookup = await cache.handler(request)      # before the route handler
    ...                                        # application logic
    stamped = await cache.store(request, resp) # after the route handler

handler() decides HIT / MISS / BYPASS and records the outcome on
``request.state.response_cache``. store() only writes when handler()
flagged the request. Read failures degrade to a MISS that is not stored;
write failures raise CacheWriteError to the host framework.

Expiration is absolute: each stored body carries
``cache.cacheExpiration`` (epoch milliseconds) and an entry is served
while ``now < cacheExpiration``. Stale entries are never deleted, only
overwritten by the next store.
"""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis
import structlog
from starlette.requests import Request

from response_cache.backend import InMemoryObjectKeyCache, ObjectKeyCache, RedisObjectKeyCache, get_cache_backend
from response_cache.config import ResponseCacheConfig, Settings
from response_cache.errors import CacheReadError, CacheWriteError, ConfigurationError
from response_cache.keys import CacheKey, calc_request_key, read_body
from response_cache.models import CachedResponse, CacheDecision, CacheLookup, RequestCacheState

_STATE_ATTR = "response_cache"


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _has_no_cache_directive(request: Request) -> bool:
    value = request.headers.get("cache-control")
    if not value:
        return False
    return any(part.strip().lower() == "no-cache" for part in value.split(","))


class ResponseCache:
    """Namespace-scoped HTTP response cache.

    Args:
        namespace: Non-empty partition name for this cache's entries.
        config: Overrides merged onto ResponseCacheConfig defaults.
        cache: A connected ``redis.asyncio.Redis`` client, an ObjectKeyCache,
            or None for an in-memory engine.
        log: structlog-style logger. Defaults to this module's logger.

    Raises:
        ConfigurationError: empty namespace or unsupported cache argument.
    """

    def __init__(
        self,
        namespace: str,
        config: ResponseCacheConfig | Mapping[str, Any] | None = None,
        cache: ObjectKeyCache | aioredis.Redis | None = None,
        log: Any = None,
    ) -> None:
        if not isinstance(namespace, str) or not namespace.strip():
            raise ConfigurationError("The response cache namespace can not be omitted.")
        self.namespace = namespace

        if isinstance(cache, aioredis.Redis):
            self.cache: ObjectKeyCache = RedisObjectKeyCache(client=cache)
        elif isinstance(cache, ObjectKeyCache):
            self.cache = cache
        elif cache is None:
            self.cache = InMemoryObjectKeyCache()
        else:
            raise ConfigurationError(
                "When passing a cache object, it must be a redis.asyncio.Redis client "
                "or an ObjectKeyCache."
            )

        self.log = log if log is not None else structlog.get_logger(__name__)
        self.config = ResponseCacheConfig.from_overrides(config)

    @classmethod
    def from_settings(cls, settings: Settings, log: Any = None) -> ResponseCache:
        return cls(
            settings.namespace,
            settings.cache_config(),
            get_cache_backend(settings),
            log,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def state(request: Request) -> RequestCacheState:
        """Cache flags for this request (all False if handler() never ran)."""
        state = getattr(request.state, _STATE_ATTR, None)
        return state if state is not None else RequestCacheState()

    def calc_request_key(self, request: Request, body: Any = None) -> CacheKey:
        return calc_request_key(request, body, self.config)

    def cache_metadata(self) -> dict[str, Any]:
        """Fresh ``body.cache`` metadata stamped at the current time."""
        now = now_ms()
        stamp = datetime.fromtimestamp(now / 1000, tz=UTC)
        return {
            "time": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "timestamp": str(now),
            "cacheExpiration": now + self.config.expire,
        }

    def stamp(self, response: CachedResponse) -> CachedResponse:
        """Copy of response with cache metadata filled in.

        Values already present in ``body["cache"]`` are kept.
        """
        existing = response.body.get("cache")
        meta = self.cache_metadata()
        if isinstance(existing, dict):
            meta.update(existing)
        return CachedResponse(
            headers=dict(response.headers),
            status=response.status,
            body={**response.body, "cache": meta},
        )

    async def _notify(self, callback: Callable[..., Any], *args: Any) -> None:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result

    async def _miss(
        self,
        request: Request,
        response: CachedResponse | None,
        decision: CacheDecision,
        event: str,
    ) -> CacheLookup:
        self.log.debug(event, namespace=self.namespace, path=request.url.path, decision=decision)
        await self._notify(self.config.on_cache_miss, request, response)
        return CacheLookup(decision=decision)

    # ------------------------------------------------------------------
    # Lookup stage
    # ------------------------------------------------------------------

    async def handler(
        self,
        request: Request,
        response: CachedResponse | None = None,
    ) -> CacheLookup:
        """Look the request up in the cache.

        Args:
            request: Inbound request. Its state gains ``response_cache``.
            response: Headers the host already set. They win over cached
                headers on a HIT.

        Returns:
            CacheLookup with the decision, and the response to serve on a HIT.
        """
        state = RequestCacheState()
        setattr(request.state, _STATE_ATTR, state)

        if _has_no_cache_directive(request):
            return await self._miss(
                request, response, CacheDecision.BYPASS_NO_CACHE_HEADER, "response_cache.bypass.no_cache"
            )
        if request.method != "GET":
            return await self._miss(
                request, response, CacheDecision.BYPASS_NON_GET, "response_cache.bypass.non_get"
            )

        cache_key = self.calc_request_key(request, await read_body(request))
        state.cache_key = cache_key

        try:
            raw = await self.cache.get(self.namespace, cache_key)
            data = json.loads(raw) if raw is not None else None
        except Exception as exc:
            err = CacheReadError(self.namespace, str(exc) or type(exc).__name__)
            self.log.error(
                "response_cache.read_failed",
                namespace=self.namespace,
                error=str(err),
                exc_info=exc,
            )
            return await self._miss(request, response, CacheDecision.MISS_ERROR, "response_cache.miss.error")

        if data is None:
            state.needs_cache = True
            return await self._miss(request, response, CacheDecision.MISS_EMPTY, "response_cache.miss.empty")

        try:
            cached = CachedResponse.from_envelope(data)
        except (TypeError, ValueError):
            cached = None
        expiration = cached.cache_expiration if cached is not None else None

        if expiration is None:
            state.needs_cache = True
            return await self._miss(
                request, response, CacheDecision.MISS_NO_EXPIRATION, "response_cache.miss.no_expiration"
            )
        if now_ms() >= expiration:
            state.needs_cache = True
            return await self._miss(request, response, CacheDecision.MISS_EXPIRED, "response_cache.miss.expired")

        headers = {name.lower(): value for name, value in cached.headers.items()}
        if response is not None:
            headers.update({name.lower(): value for name, value in response.headers.items()})
        served = CachedResponse(headers=headers, status=cached.status, body=cached.body)

        state.has_data = True
        state.used_cache = True
        self.log.debug(
            "response_cache.hit",
            namespace=self.namespace,
            path=request.url.path,
            decision=CacheDecision.HIT,
        )
        await self._notify(self.config.on_cache_hit, request, served, data)
        return CacheLookup(decision=CacheDecision.HIT, response=served)

    # ------------------------------------------------------------------
    # Store stage
    # ------------------------------------------------------------------

    async def store(self, request: Request, response: CachedResponse) -> CachedResponse:
        """Write the response to the cache if handler() flagged the request.

        Returns:
            The stamped response that was stored, or ``response`` unchanged
            when nothing was stored.

        Raises:
            CacheWriteError: the cache engine failed to store the envelope.
        """
        cache_key = self.calc_request_key(request, await read_body(request))
        if not self.state(request).needs_cache:
            return response

        stamped = self.stamp(response)
        try:
            value = json.dumps(stamped.to_envelope(), default=str)
            await self.cache.set(self.namespace, cache_key, value)
        except Exception as exc:
            self.log.error("response_cache.write_failed", namespace=self.namespace, error=str(exc))
            raise CacheWriteError(self.namespace, str(exc) or type(exc).__name__) from exc

        self.log.debug(
            "response_cache.stored",
            namespace=self.namespace,
            path=request.url.path,
            expires_at=stamped.cache_expiration,
        )
        return stamped
