"""aiohttp web application exposing the pipeline endpoints.

Provides:
- create_app: Build the application around a PipelineCoordinator
- run_app: Serve the application until cancelled
"""

import asyncio

import structlog
from aiohttp import web

from kypipeline.coordinator import PipelineCoordinator
from kypipeline.core.config import Config

from .middleware import error_middleware
from .routes import COORDINATOR_KEY, setup_routes

logger = structlog.get_logger()


def create_app(config: Config, coordinator: PipelineCoordinator | None = None) -> web.Application:
    """Create and configure the web application.

    The database session factory must already be initialized
    (see kypipeline.core.persistence.database).

    Args:
        config: Application configuration
        coordinator: Pre-built coordinator (tests inject fakes through it)

    Returns:
        Configured Application with all routes registered
    """
    app = web.Application(middlewares=[error_middleware])
    app[COORDINATOR_KEY] = coordinator or PipelineCoordinator(config)
    setup_routes(app)
    return app


async def run_app(app: web.Application, host: str, port: int) -> None:
    """Serve the app without blocking the event loop's owner.

    Args:
        app: Application from create_app()
        host: Bind address
        port: Bind port
    """
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("http_server_started", host=host, port=port)

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


__all__ = ["create_app", "run_app", "COORDINATOR_KEY"]
