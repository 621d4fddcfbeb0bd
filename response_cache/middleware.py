"""Response cache middleware for FastAPI / Starlette.

Runs the two ResponseCache stages around the route handler:

- before: ResponseCache.handler() - a HIT is answered from the cache and
  the route is never called
- after: ResponseCache.store() - the JSON body produced by the route is
  stamped and written back when the lookup flagged the request

Headers added to responses:
- X-Cache: HIT   - served from cache
- X-Cache: MISS  - produced by the route and stored
- X-Cache: SKIP  - caching was not applicable (no-cache, non-GET,
  read error, non-JSON body)

CacheWriteError is not caught here; it reaches the application's
exception handlers.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from response_cache.cache import ResponseCache
from response_cache.models import CachedResponse
from response_cache.telemetry.logging import bind_cache_context

log = structlog.get_logger(__name__)

CACHE_STATUS_HEADER = "X-Cache"

# Recomputed by the replaying JSONResponse, or never shared between clients
_UNSTORED_HEADERS = frozenset(
    {
        "content-length",
        "content-type",
        "transfer-encoding",
        "set-cookie",
        CACHE_STATUS_HEADER.lower(),
    }
)


def _storable_headers(response: Response) -> dict[str, str]:
    return {
        name: value
        for name, value in response.headers.items()
        if name.lower() not in _UNSTORED_HEADERS
    }


def _replay(cached: CachedResponse, cache_status: str) -> JSONResponse:
    headers = {name: value for name, value in cached.headers.items() if name.lower() not in _UNSTORED_HEADERS}
    headers[CACHE_STATUS_HEADER] = cache_status
    return JSONResponse(content=cached.body, status_code=cached.status, headers=headers)


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve GET responses from a ResponseCache and store fresh ones.

    Args:
        app: ASGI application
        cache: Shared ResponseCache (engine + configuration)
        paths: Optional path prefixes to cache. Other paths pass straight through.
    """

    def __init__(
        self,
        app: ASGIApp,
        cache: ResponseCache,
        paths: Sequence[str] | None = None,
    ) -> None:
        super().__init__(app)
        self._cache = cache
        self._paths = tuple(paths or ())

    def _applies(self, request: Request) -> bool:
        if not self._paths:
            return True
        return request.url.path.startswith(self._paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self._applies(request):
            return await call_next(request)

        bind_cache_context(self._cache.namespace)
        lookup = await self._cache.handler(request)
        if lookup.decision.is_hit and lookup.response is not None:
            return _replay(lookup.response, "HIT")

        response = await call_next(request)

        if not self._cache.state(request).needs_cache:
            response.headers[CACHE_STATUS_HEADER] = "SKIP"
            return response

        if "application/json" not in response.headers.get("content-type", ""):
            log.debug(
                "response_cache.store_skipped",
                path=request.url.path,
                reason="not_json",
            )
            response.headers[CACHE_STATUS_HEADER] = "SKIP"
            return response

        body_bytes = b""
        async for chunk in response.body_iterator:
            body_bytes += chunk

        try:
            body = json.loads(body_bytes)
        except ValueError:
            body = None

        if not isinstance(body, dict):
            log.debug(
                "response_cache.store_skipped",
                path=request.url.path,
                reason="not_an_object",
            )
            headers = dict(response.headers)
            headers[CACHE_STATUS_HEADER] = "SKIP"
            return Response(
                content=body_bytes,
                status_code=response.status_code,
                headers=headers,
                media_type=response.media_type,
            )

        stamped = await self._cache.store(
            request,
            CachedResponse(
                headers=_storable_headers(response),
                status=response.status_code,
                body=body,
            ),
        )
        return _replay(stamped, "MISS")
