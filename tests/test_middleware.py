"""Tests for ResponseCacheMiddleware and the demo application.

Coverage:
- First GET is a MISS (route runs, response stored), second is a HIT
  (route skipped, identical body)
- no-cache, non-GET and path-filtered requests skip the cache
- Non-JSON and non-object bodies pass through unstored
- Expired entries are refreshed by the route
- Routes inside a Mount hit the cache on repeat requests
- Write failures propagate to the host framework
- create_app(): request ids, cached sample route, write-failure handler
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Mount, Route

from response_cache.backend import ObjectKeyCache
from response_cache.cache import ResponseCache
from response_cache.errors import CacheBackendError, CacheWriteError
from response_cache.middleware import ResponseCacheMiddleware


class Counter:
    def __init__(self) -> None:
        self.calls = 0


def build_app(cache: ResponseCache, counter: Counter, paths: list[str] | None = None) -> Starlette:
    async def item(request: Request) -> Response:
        counter.calls += 1
        return JSONResponse(
            {"id": request.path_params["item_id"], "calls": counter.calls},
            headers={"X-App": "items"},
        )

    async def create(request: Request) -> Response:
        counter.calls += 1
        return JSONResponse({"created": True}, status_code=201)

    async def text(request: Request) -> Response:
        counter.calls += 1
        return PlainTextResponse("plain")

    async def listing(request: Request) -> Response:
        counter.calls += 1
        return JSONResponse([1, 2, 3])

    routes = [
        Route("/items/{item_id}", item, methods=["GET"]),
        Route("/items", create, methods=["POST"]),
        Route("/text", text, methods=["GET"]),
        Route("/list", listing, methods=["GET"]),
    ]
    app = Starlette(routes=routes)
    app.add_middleware(ResponseCacheMiddleware, cache=cache, paths=paths)
    return app


@pytest.fixture
def counter() -> Counter:
    return Counter()


@pytest.fixture
def cache(memory_backend) -> ResponseCache:
    return ResponseCache("test", {"expire": 60_000}, memory_backend)


@pytest_asyncio.fixture
async def client(cache: ResponseCache, counter: Counter) -> AsyncGenerator[AsyncClient, None]:
    app = build_app(cache, counter)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


class TestResponseCacheMiddleware:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, client: AsyncClient, counter: Counter) -> None:
        first = await client.get("/items/7")
        assert first.status_code == 200
        assert first.headers["x-cache"] == "MISS"
        assert first.json()["id"] == "7"
        assert "cacheExpiration" in first.json()["cache"]

        second = await client.get("/items/7")
        assert second.status_code == 200
        assert second.headers["x-cache"] == "HIT"
        assert second.headers["x-app"] == "items"
        assert second.json() == first.json()
        assert counter.calls == 1

    @pytest.mark.asyncio
    async def test_path_params_separate_entries(self, client: AsyncClient, counter: Counter) -> None:
        await client.get("/items/1")
        other = await client.get("/items/2")
        assert other.headers["x-cache"] == "MISS"
        assert other.json()["id"] == "2"
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_mounted_route_is_served_from_cache(self, cache: ResponseCache, counter: Counter) -> None:
        async def item(request: Request) -> Response:
            counter.calls += 1
            return JSONResponse({"id": request.path_params["item_id"]})

        app = Starlette(routes=[Mount("/api", routes=[Route("/items/{item_id}", item)])])
        app.add_middleware(ResponseCacheMiddleware, cache=cache)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            first = await c.get("/api/items/7")
            second = await c.get("/api/items/7")
            other = await c.get("/api/items/8")

        assert first.headers["x-cache"] == "MISS"
        assert second.headers["x-cache"] == "HIT"
        assert second.json() == first.json()
        assert other.headers["x-cache"] == "MISS"
        assert other.json()["id"] == "8"
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_no_cache_header_skips(self, client: AsyncClient, counter: Counter) -> None:
        await client.get("/items/7")
        response = await client.get("/items/7", headers={"Cache-Control": "no-cache"})
        assert response.headers["x-cache"] == "SKIP"
        assert "cache" not in response.json()
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_post_skips(self, client: AsyncClient, counter: Counter) -> None:
        first = await client.post("/items", json={"name": "a"})
        second = await client.post("/items", json={"name": "a"})
        assert first.status_code == 201
        assert first.headers["x-cache"] == "SKIP"
        assert second.headers["x-cache"] == "SKIP"
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_non_json_passes_through(self, client: AsyncClient, counter: Counter) -> None:
        first = await client.get("/text")
        second = await client.get("/text")
        assert first.text == "plain"
        assert first.headers["x-cache"] == "SKIP"
        assert second.headers["x-cache"] == "SKIP"
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_non_object_json_passes_through(self, client: AsyncClient, counter: Counter) -> None:
        first = await client.get("/list")
        second = await client.get("/list")
        assert first.json() == [1, 2, 3]
        assert second.headers["x-cache"] == "SKIP"
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_expired_entry_is_refreshed(self, memory_backend, counter, clock) -> None:
        cache = ResponseCache("test", {"expire": 10}, memory_backend)
        app = build_app(cache, counter)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            await c.get("/items/7")
            clock.tick(5)
            assert (await c.get("/items/7")).headers["x-cache"] == "HIT"
            clock.tick(20)
            refreshed = await c.get("/items/7")
            assert refreshed.headers["x-cache"] == "MISS"
            assert refreshed.json()["calls"] == 2
            assert (await c.get("/items/7")).headers["x-cache"] == "HIT"

    @pytest.mark.asyncio
    async def test_paths_filter(self, cache, counter) -> None:
        app = build_app(cache, counter, paths=["/items"])
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            response = await c.get("/list")
            assert "x-cache" not in response.headers
            assert (await c.get("/items/1")).headers["x-cache"] == "MISS"

    @pytest.mark.asyncio
    async def test_read_failure_serves_route(self, counter) -> None:
        engine = MagicMock(spec=ObjectKeyCache)
        engine.get.side_effect = CacheBackendError("down")
        app = build_app(ResponseCache("test", {"expire": 10}, engine), counter)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            response = await c.get("/items/1")
        assert response.status_code == 200
        assert response.headers["x-cache"] == "SKIP"
        engine.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, counter) -> None:
        engine = MagicMock(spec=ObjectKeyCache)
        engine.get.return_value = None
        engine.set.side_effect = CacheBackendError("down")
        app = build_app(ResponseCache("test", {"expire": 10}, engine), counter)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            with pytest.raises(CacheWriteError):
                await c.get("/items/1")


class TestCreateApp:
    @pytest.fixture
    def app(self, fake_settings):
        from response_cache.main import create_app
        return create_app(fake_settings)

    @pytest.mark.asyncio
    async def test_sample_route_is_cached(self, app) -> None:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            first = await c.get("/items/abc", params={"page": "2"})
            second = await c.get("/items/abc", params={"page": "2"})
        assert first.headers["x-cache"] == "MISS"
        assert second.headers["x-cache"] == "HIT"
        assert second.json()["generated_at"] == first.json()["generated_at"]
        assert second.json()["query"] == {"page": "2"}
        assert first.headers["x-request-id"].startswith("req_")

    @pytest.mark.asyncio
    async def test_health_reports_cache_info(self, app) -> None:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            response = await c.get("/health")
        assert response.status_code == 200
        assert response.json()["cache"]["backend"] == "memory"

    @pytest.mark.asyncio
    async def test_write_failure_returns_500(self, app) -> None:
        engine = MagicMock(spec=ObjectKeyCache)
        engine.get.return_value = None
        engine.set.side_effect = CacheBackendError("down")
        app.state.response_cache.cache = engine

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.get("/items/abc")
        assert response.status_code == 500
        assert response.json() == {"detail": "Response cache write failed"}
