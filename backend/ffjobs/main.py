"""
ffjobs HTTP service: ffmpeg jobs with live progress over server-sent events.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .execution.tool import FFmpegTool
from .jobs.engine import JobEngine
from .jobs.eviction import EvictionScheduler
from .jobs.registry import JobStore
from .logging_config import configure_logging
from .probe import FFprobeTool
from .routes import health, jobs, probe
from .settings import ServiceSettings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[ServiceSettings] = None,
    scheduler: Optional[EvictionScheduler] = None,
) -> FastAPI:
    """
    Build the application and wire its shared state.

    Args:
        settings: Service settings, read from the environment when omitted
        scheduler: Eviction scheduler, a background-driven one when omitted
    """
    if settings is None:
        settings = ServiceSettings.from_env()
    configure_logging(settings.log_level)

    owns_scheduler = scheduler is None
    if scheduler is None:
        scheduler = EvictionScheduler()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_scheduler:
            scheduler.start()
        logger.info(f"[Service] ffjobs {__version__} started (retention={settings.retention_seconds:g}s)")
        try:
            yield
        finally:
            app.state.engine.shutdown()
            if owns_scheduler:
                scheduler.stop()
            logger.info("[Service] ffjobs stopped")

    app = FastAPI(title="ffjobs", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.ffmpeg = FFmpegTool(
        path=settings.ffmpeg_path,
        timeout=settings.run_timeout,
        stderr_limit=settings.stderr_limit,
    )
    app.state.ffprobe = FFprobeTool(path=settings.ffprobe_path, timeout=settings.probe_timeout)
    app.state.store = JobStore()
    app.state.scheduler = scheduler
    app.state.engine = JobEngine(
        tool=app.state.ffmpeg,
        store=app.state.store,
        scheduler=scheduler,
        retention_seconds=settings.retention_seconds,
        subscriber_buffer=settings.subscriber_buffer,
    )

    app.include_router(health.router)
    app.include_router(probe.router)
    app.include_router(jobs.router)

    @app.get("/")
    async def root():
        return {"service": "ffjobs", "status": "running"}

    return app


app = create_app()
