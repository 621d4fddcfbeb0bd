"""Cache key derivation.

A cache key is a plain mapping describing the request:

    {"url": "/items/7", "body": None, "params": {"item_id": "7"},
     "method": "GET", "query": {"page": "2"}, "headers": {...}}

``method``, ``query`` and ``headers`` are dropped when the matching
``ignore_*`` flag is set. Browser cache-validation headers are always
stripped. The engine serialises keys with sorted mapping keys, so the
mapping's insertion order never matters.
"""

from __future__ import annotations

import json
from typing import Any

from starlette.requests import Request
from starlette.routing import Match

from response_cache.config import ResponseCacheConfig

CacheKey = dict[str, Any]


async def read_body(request: Request) -> Any:
    """Return the request body as a key-friendly value.

    None for an empty body, the decoded JSON value when the body parses
    as JSON, otherwise the body as text. Starlette caches the bytes on the
    request, so calling this from both stages reads the stream once.
    """
    raw = await request.body()
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


def _match_path_params(routes: Any, scope: dict[str, Any]) -> dict[str, Any]:
    for route in routes:
        match, child_scope = route.matches(scope)
        if match != Match.FULL:
            continue
        nested = {**scope, **child_scope}
        # Mount / Host: the leaf route decides the final params
        sub_routes = getattr(route, "routes", None)
        if sub_routes:
            return _match_path_params(sub_routes, nested)
        return dict(nested.get("path_params", {}))
    return dict(scope.get("path_params", {}))


def resolve_path_params(request: Request) -> dict[str, Any]:
    """Path params of the route that will serve this request.

    Middleware runs before routing, so request.path_params is usually still
    empty; match the application's routes, descending into mounted routers,
    to fill them in. The result equals what the router later writes into
    the scope, so both cache stages derive the same key.
    """
    if request.path_params:
        return dict(request.path_params)
    router = getattr(request.scope.get("app"), "router", None)
    return _match_path_params(getattr(router, "routes", ()), dict(request.scope))


def query_mapping(request: Request) -> dict[str, Any]:
    """Query string as name -> value, or name -> [values] for repeated names."""
    query: dict[str, Any] = {}
    for name, value in request.query_params.multi_items():
        if name not in query:
            query[name] = value
        elif isinstance(query[name], list):
            query[name].append(value)
        else:
            query[name] = [query[name], value]
    return query


def calc_request_key(request: Request, body: Any, config: ResponseCacheConfig) -> CacheKey:
    excluded = set(config.excluded_headers)
    headers = {name: value for name, value in request.headers.items() if name not in excluded}

    key: CacheKey = {
        "url": request.url.path,
        "body": body,
        "params": resolve_path_params(request),
    }
    if not config.ignore_headers:
        key["headers"] = headers
    if not config.ignore_method:
        key["method"] = request.method
    if not config.ignore_query:
        key["query"] = query_mapping(request)
    return key
