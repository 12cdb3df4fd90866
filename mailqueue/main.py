"""
Mail queue service - API entry point.

Serves the operator API for the email queue and, optionally, runs a worker
in the same process.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_client import make_asgi_app
import uvicorn

from mailqueue import __version__
from mailqueue.api import build_api_router
from mailqueue.core.bootstrap import QueueRuntime, build_runtime
from mailqueue.core.config import Settings, get_settings
from mailqueue.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[QueueRuntime] = None,
) -> FastAPI:
    """Build the API app. A provided runtime is used as-is and not closed."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})...")
        owned = runtime is None
        app.state.runtime = runtime or build_runtime(settings)

        worker_task = None
        worker = None
        if settings.RUN_EMBEDDED_WORKER:
            worker = app.state.runtime.build_worker()
            worker_task = asyncio.create_task(worker.start())
            # Let start() mark the worker running before requests arrive
            await asyncio.sleep(0)
            logger.info("Embedded worker started")

        try:
            yield
        finally:
            if worker is not None:
                await worker.stop()
                await asyncio.gather(worker_task, return_exceptions=True)
            if owned:
                await app.state.runtime.close()
            app.state.runtime = None
            logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title="Mail Queue",
        description="Durable email job queue with operator API",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(build_api_router(include_test_routes=not settings.is_production), prefix="/api")
    app.mount("/metrics", make_asgi_app())

    @app.get("/")
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/api/v1/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    _settings = get_settings()
    setup_logging(_settings.LOG_LEVEL, json_output=_settings.LOG_JSON)
    uvicorn.run(
        "mailqueue.main:app",
        host=_settings.HOST,
        port=_settings.PORT,
        reload=_settings.DEBUG,
        log_level=_settings.LOG_LEVEL.lower(),
    )
