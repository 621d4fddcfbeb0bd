"""FastAPI application entrypoint.

Demo service wired with the response cache.

Startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Build the ResponseCache (Redis when RESPONSE_CACHE_REDIS_URL is set)
4. Register middleware (request id, response cache)

Shutdown order:
1. Close the cache engine
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from response_cache.cache import ResponseCache
from response_cache.config import Settings, get_settings
from response_cache.errors import CacheWriteError
from response_cache.middleware import ResponseCacheMiddleware
from response_cache.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings

    configure_logging(
        json_logs=settings.effective_json_logs,
        log_level=settings.effective_log_level,
    )
    log.info(
        "app.starting",
        environment=settings.environment,
        namespace=settings.namespace,
        backend="redis" if settings.redis_url else "memory",
    )
    log.info("app.ready")
    yield

    await app.state.response_cache.cache.close()
    log.info("app.shutdown")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory."""
    settings = settings or get_settings()
    response_cache = ResponseCache.from_settings(settings)

    app = FastAPI(
        title="Response Cache Demo",
        description="Sample service whose GET routes are served through the response cache.",
        version="0.1.0",
        docs_url="/docs" if settings.is_dev else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.response_cache = response_cache

    # ------------------------------------------------------------------ #
    # Middleware (added in reverse order - last added = first executed)
    # ------------------------------------------------------------------ #
    app.add_middleware(
        ResponseCacheMiddleware,
        cache=response_cache,
        paths=settings.cache_paths or None,
    )
    app.add_middleware(RequestIdMiddleware)

    # ------------------------------------------------------------------ #
    # Routes
    # ------------------------------------------------------------------ #

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, Any]:
        return {"status": "ok", "cache": await response_cache.cache.info()}

    @app.get("/items/{item_id}")
    async def read_item(item_id: str, request: Request) -> dict[str, Any]:
        return {
            "id": item_id,
            "query": dict(request.query_params),
            "generated_at": datetime.now(UTC).isoformat(),
        }

    # ------------------------------------------------------------------ #
    # Global exception handlers
    # ------------------------------------------------------------------ #

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        if isinstance(exc, CacheWriteError):
            log.error(
                "app.cache_write_failed",
                path=request.url.path,
                namespace=exc.namespace,
                error=str(exc),
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Response cache write failed"},
            )
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


# Module-level app instance for uvicorn
app = create_app()
