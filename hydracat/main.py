"""
HydraCat Logging API
====================
FastAPI application entry point. The logging stack is built once in the
lifespan handler (or passed in by tests) and shared through app.state.

Start-up: clear expired day caches, probe connectivity, start the sync
orchestrator, drain anything left in the offline queue from a previous
run, warm today's cache, then keep probing in the background.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hydracat.config import get_settings
from hydracat.logging_config import configure_logging
from hydracat.routers import sync, treatments
from hydracat.stack import LoggingStack, build_stack

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    stack: LoggingStack = getattr(app.state, "stack", None) or build_stack(settings)
    app.state.stack = stack

    await stack.cache.clear_expired()
    await stack.connectivity.refresh()
    stack.orchestrator.start()
    if stack.connectivity.is_connected and await stack.queue.size() > 0:
        await stack.orchestrator.sync_now()
    await stack.coordinator.warm_cache()

    probe = asyncio.create_task(stack.connectivity.watch(settings.connectivity_poll_seconds))
    logger.info("HydraCat logging API started (%s)", settings.environment)
    try:
        yield
    finally:
        probe.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await probe
        stack.orchestrator.stop()
        await stack.connectivity.aclose()


def create_app(stack: Optional[LoggingStack] = None) -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="HydraCat Logging API",
        description="Offline-first treatment logging for HydraCat",
        version="0.1.0",
        docs_url="/api/docs" if settings.environment != "production" else None,
        redoc_url="/api/redoc" if settings.environment != "production" else None,
        lifespan=lifespan,
    )
    if stack is not None:
        app.state.stack = stack

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(treatments.router)
    app.include_router(sync.router)

    @app.get("/api/v1/health")
    async def health_check() -> dict:
        return {"status": "ok", "service": "hydracat-logging-api"}

    return app


app = create_app()
