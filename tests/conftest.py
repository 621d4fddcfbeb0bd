"""
Shared test fixtures for pytest.

- fake_settings: Test environment configuration (in-memory engine)
- make_request: Build a Starlette Request from plain values
- memory_backend: Fresh InMemoryObjectKeyCache
- response_cache: ResponseCache("test", expire=10) over memory_backend
- clock: Controllable epoch-millisecond clock patched into the cache module
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from starlette.requests import Request

from response_cache.backend import InMemoryObjectKeyCache
from response_cache.cache import ResponseCache
from response_cache.config import Environment, Settings, get_settings
from response_cache.telemetry.logging import clear_context


@pytest.fixture(autouse=True)
def _clear_settings_and_context():
    """Clear the lru_cache on get_settings and structlog context vars."""
    get_settings.cache_clear()
    clear_context()
    yield
    get_settings.cache_clear()
    clear_context()


@pytest.fixture
def fake_settings() -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        namespace="test",
        redis_url="",
        expire_ms=10_000,
    )


def build_request(
    method: str = "GET",
    path: str = "/",
    headers: dict[str, str] | None = None,
    query_string: str = "",
    body: bytes = b"",
    app: Any = None,
) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "server": ("localhost", 80),
        "client": ("127.0.0.1", 50000),
        "root_path": "",
        "path": path,
        "raw_path": path.encode(),
        "query_string": query_string.encode(),
        "headers": [(name.lower().encode(), value.encode()) for name, value in (headers or {}).items()],
    }
    if app is not None:
        scope["app"] = app

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


@pytest.fixture
def make_request() -> Callable[..., Request]:
    return build_request


@pytest.fixture
def memory_backend() -> InMemoryObjectKeyCache:
    return InMemoryObjectKeyCache()


@pytest.fixture
def response_cache(memory_backend: InMemoryObjectKeyCache) -> ResponseCache:
    return ResponseCache("test", {"expire": 10}, memory_backend)


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def tick(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr("response_cache.cache.now_ms", fake)
    return fake
