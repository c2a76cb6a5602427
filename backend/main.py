"""FastAPI application entry point for the Sentinel backend.

This module builds the FastAPI application with its routers and lifespan.
Settings are loaded once at startup; a missing token or allow-list makes
startup fail instead of serving without a sandbox.

Usage:
    uv run uvicorn --factory main:create_app
    python -m main
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from api.routes import api_router, router, set_ops_manager
from config import Settings, configure_logging, get_settings
from ops_manager import OpsManager

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings; loaded from the environment if None.

    Returns:
        The configured FastAPI application.

    Raises:
        pydantic.ValidationError: If settings are loaded and invalid.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the ops manager on startup and release the pm2 handle on shutdown."""
        logger.info(
            "application_starting",
            port=settings.port,
            log_level=settings.log_level,
            allowed_paths=list(settings.allowed_roots),
        )

        ops_manager = OpsManager.from_settings(settings)
        set_ops_manager(ops_manager)
        app.state.ops_manager = ops_manager

        logger.info("application_started")

        yield

        logger.info("application_shutting_down")
        await ops_manager.close()
        set_ops_manager(None)
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Sentinel",
        description="Restricted remote execution API: whitelisted read-only shell "
        "commands confined to allowed directories, pm2 process control, log search "
        "and GPU status.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings

    app.include_router(router, tags=["health"])
    app.include_router(api_router, tags=["sentinel"])

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "message": "Sentinel API",
            "docs": "/docs",
            "health": "/health",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
