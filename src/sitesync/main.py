"""Main entry point for the sitesync trigger service."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from sitesync import __version__
from sitesync.api.health import router as health_router
from sitesync.api.middleware import (
    setup_error_handling,
    setup_logging_middleware,
    setup_metrics_middleware,
)
from sitesync.api.trigger import router as trigger_router
from sitesync.core.config import Settings, load_settings
from sitesync.dispatch import Dispatcher, create_dispatcher
from sitesync.trigger import Authenticator, EventFilter
from sitesync.utils.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting sitesync",
        version=__version__,
        repository=settings.source_repository,
        branch=settings.source_branch,
        dispatch_backend=app.state.dispatcher.name,
    )

    yield

    logger.info("Shutting down sitesync, waiting for in-flight deployments")
    app.state.dispatcher.shutdown(wait=True)


def create_app(settings: Optional[Settings] = None, dispatcher: Optional[Dispatcher] = None) -> FastAPI:
    """Create FastAPI application."""
    if settings is None:
        settings = load_settings()

    setup_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="sitesync",
        version=__version__,
        description="Rebuilds and publishes a static site when its default branch changes",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.authenticator = Authenticator(settings.webhook_secret, settings.override_key)
    app.state.event_filter = EventFilter(settings.source_repository, settings.source_branch)
    app.state.dispatcher = dispatcher or create_dispatcher(settings)

    setup_error_handling(app)
    setup_logging_middleware(app)
    setup_metrics_middleware(app)

    app.include_router(health_router, tags=["runtime"])
    app.include_router(trigger_router, tags=["trigger"])

    if settings.metrics_enabled:
        app.mount("/metrics", make_asgi_app())

    return app


def run() -> None:
    """Run the trigger server."""
    settings = load_settings()

    # SIGTERM is handled by uvicorn; lifespan shutdown waits for running deployments.
    config = uvicorn.Config(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
    )
    uvicorn.Server(config).run()


if __name__ == "__main__":
    run()
