from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.routes.download import router as download_router
from .api.routes.generate import router as generate_router
from .api.routes.health import router as health_router
from .api.routes.stripe import router as stripe_router
from .api.routes.subscription import router as subscription_router
from .api.routes.webhook_callback import router as webhook_callback_router
from .core.config import Settings, get_settings
from .core.errors import register_exception_handlers
from .repositories.rate_limits import InMemoryRateLimitRepository
from .services.storage import StorageConfigurationError, build_storage_service
from .telemetry import configure_tracing, setup_prometheus

logger = structlog.get_logger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    _configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        rate_limiter = InMemoryRateLimitRepository(
            sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds
        )
        try:
            object_store = build_storage_service(settings)
        except StorageConfigurationError as exc:
            logger.warning("storage.not_configured", error=str(exc))
            object_store = None

        async with httpx.AsyncClient() as client:
            app.state.http_client = client
            app.state.rate_limiter = rate_limiter
            app.state.object_store = object_store
            rate_limiter.start()
            logger.info("app.started", env=settings.app_env, version=__version__)
            try:
                yield
            finally:
                await rate_limiter.stop()
                logger.info("app.stopped")

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings

    register_exception_handlers(app)
    if settings.enable_prometheus_metrics:
        setup_prometheus(app, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.backend_cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for router in (
        health_router,
        generate_router,
        download_router,
        subscription_router,
        stripe_router,
        webhook_callback_router,
    ):
        app.include_router(router, prefix=settings.api_prefix)

    configure_tracing(app, settings)
    return app


def main() -> None:
    uvicorn.run("ghibli_ai.main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
