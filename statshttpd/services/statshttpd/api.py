"""FastAPI app exposing liveness, version and flush bookkeeping for deployment checks."""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from statshttpd.core.config import Settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    flush_status: Callable[[], dict[str, Any]],
    backend_status: Callable[[], dict[str, bool]] | None = None,
) -> FastAPI:
    """Build the app; the status callables are invoked per request."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "api_startup",
            extra={"service": settings.APP_NAME, "env": settings.ENV, "version": settings.VERSION},
        )
        yield
        logger.info("api_shutdown", extra={"service": settings.APP_NAME})

    app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)

    @app.get("/health")
    def health() -> dict[str, Any]:
        """Return liveness, degraded when an enabled backend does not answer a ping."""

        if backend_status is None:
            return {"status": "ok"}
        backends = backend_status()
        return {
            "status": "ok" if all(backends.values()) else "degraded",
            "backends": backends,
        }

    @app.get("/version")
    def version() -> dict[str, str]:
        return {
            "name": settings.APP_NAME,
            "version": settings.VERSION,
            "env": settings.ENV,
        }

    @app.get("/flush")
    def flush() -> dict[str, Any]:
        """Return the flush interval and the last persisted flush time."""

        return flush_status()

    return app
