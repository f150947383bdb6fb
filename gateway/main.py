from __future__ import annotations

from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request

from gateway.api.routes import cache, health, metrics
from gateway.application.factory import ProviderAdapterFactory
from gateway.application.services.gateway import build_gateway
from gateway.core.logging import configure_logging, get_logger, log_fields
from gateway.core.settings import Settings, get_settings
from gateway.infrastructure.cache_store import RedisCacheStore
from gateway.infrastructure.memory_client import get_memory_redis
from gateway.infrastructure.redis_client import get_redis_client

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan context."""

        configure_logging(json=settings.environment != "dev")

        if settings.sentry_dsn:
            sentry_sdk.init(dsn=settings.sentry_dsn, traces_sample_rate=0.1)

        if settings.redis_url == "memory://":
            redis = get_memory_redis()
        else:
            redis = get_redis_client(settings)

        store = RedisCacheStore(redis, prefix=settings.cache_key_prefix)
        factory = ProviderAdapterFactory(settings)

        # Store in app state for dependencies
        app.state.settings = settings
        app.state.redis = redis
        app.state.gateway = build_gateway(settings, store, factory)

        yield

        # Cleanup
        await factory.shutdown()
        await redis.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(
            "Request handled",
            extra=log_fields(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            ),
        )
        return response

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.api_version,
            "status": "online",
        }

    app.include_router(health.router, prefix="/internal")
    app.include_router(metrics.router, prefix="/internal")
    app.include_router(cache.router, prefix="/internal")

    return app


app = create_app()
