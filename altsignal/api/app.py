"""FastAPI application factory with lifespan, CORS, and routers."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from altsignal import __version__
from altsignal.config import get_settings
from altsignal.pipeline import Pipeline, build_pipeline

logger = logging.getLogger(__name__)

_start_time: float = 0.0


def get_uptime() -> float:
    return time.time() - _start_time if _start_time else 0.0


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def create_app(pipeline: Pipeline | None = None, *, run_driver: bool = True) -> FastAPI:
    """Build the FastAPI app.

    When *pipeline* is given the caller owns its lifecycle; otherwise one is
    built from settings on startup and closed on shutdown.
    """
    settings = get_settings()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        global _start_time
        _start_time = time.time()

        owned = app.state.pipeline is None
        driver_task = None
        if owned:
            app.state.pipeline = build_pipeline(settings, mock=settings.mock_mode)
            await app.state.pipeline.start()
            if run_driver:
                driver_task = asyncio.create_task(app.state.pipeline.driver.run(), name="monitor-driver")
        logger.info("altsignal API v%s starting", __version__)
        yield
        logger.info("altsignal API shutting down")
        if owned:
            await app.state.pipeline.close()
            if driver_task is not None:
                await asyncio.gather(driver_task, return_exceptions=True)

    app = FastAPI(
        title="altsignal",
        description="Alternative-data signal fusion and alerting",
        version=__version__,
        lifespan=_lifespan,
    )
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from altsignal.api.routes import alerts, system
    app.include_router(alerts.router, prefix="/api")
    app.include_router(system.router, prefix="/api")
    return app
