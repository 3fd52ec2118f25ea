"""
FastAPI application factory and configuration.

This module creates and configures the FastAPI application with its
middleware, error handling and routes.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ...application.container import IContainer
from ...application.startup import ApplicationStartup
from ...infrastructure.config.models import ApplicationConfig
from .middleware import ErrorHandlerMiddleware, RequestTimingMiddleware
from .routers import attachments, bridge, health, uploads

logger = logging.getLogger(__name__)


def _lifespan(startup: Optional[ApplicationStartup]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Application lifespan manager.

        Starts the components when a startup object was given; otherwise the
        caller owns their lifecycle.
        """
        logger.info("Application starting up...")
        if startup is not None:
            await startup.start_application()

        try:
            yield
        finally:
            if startup is not None:
                await startup.stop_application()
            logger.info("Application shutting down...")

    return lifespan


def create_app(container: IContainer, config: ApplicationConfig,
               startup: Optional[ApplicationStartup] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        container: Dependency injection container with configured services
        config: Application configuration
        startup: If given, components are started and stopped with the app

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=config.name,
        version=config.version,
        description="Signed upload URLs, attachment registry and upload message bridge",
        debug=config.debug,
        lifespan=_lifespan(startup)
    )

    app.state.container = container
    app.state.config = config

    _configure_middleware(app, config)
    _register_routes(app)

    logger.info(f"FastAPI application created: {config.name} v{config.version}")
    return app


def _configure_middleware(app: FastAPI, config: ApplicationConfig) -> None:
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)

    origins = config.security.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.debug("Middleware configured")


def _register_routes(app: FastAPI) -> None:
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(attachments.router, tags=["attachments"])
    app.include_router(uploads.router, tags=["uploads"])
    app.include_router(bridge.router, prefix="/ws", tags=["bridge"])

    @app.get("/", tags=["root"])
    async def root() -> Dict[str, Any]:
        """Root endpoint with basic application information."""
        return {
            "name": app.title,
            "version": app.version,
            "status": "running",
            "docs_url": "/docs",
            "health_url": "/health"
        }

    logger.debug("Routes registered")
