"""
Federated Auth Service Entry Point

This module defines the FastAPI application instance for the link
administration API, registers all routers, configures global exception
handling, and provides a test-friendly application factory.

Design Goals
------------
- Deterministic startup
- Fail fast on broken domain configuration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from fastapi import FastAPI

from .config import settings
from .core.errors import (
    FederationError,
    federation_error_handler,
    unhandled_exception_handler,
)
from .api import health_routes, link_routes
from .api.dependencies import get_domain_manager
from .db.session import dispose_engines


logger = logging.getLogger("fedauth.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="mw-federated-auth",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(FederationError, federation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(link_routes.router)

    # --------------------------------------------------------------
    # Startup Validation Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup_validation() -> None:
        """
        Fail-fast validation at application startup.

        Loads the domain configuration now (not at first use), so a broken
        domains file stops the service before the first request.
        """
        logging.getLogger("fedauth").setLevel(settings.log_level.upper())
        logger.info("Starting mw-federated-auth")

        if not settings.jwt_admin_secret.get_secret_value():
            logger.warning("jwt_admin_secret is not set; admin endpoints will reject every request")

        manager = get_domain_manager()
        logger.info(
            "Configuration validated successfully (%d domain(s), local login %s)",
            len(manager.all_domains()),
            "enabled" if manager.is_local_enabled else "disabled",
        )

    # --------------------------------------------------------------
    # Shutdown Hook
    # --------------------------------------------------------------

    @app.on_event("shutdown")
    async def _shutdown_cleanup() -> None:
        """
        Graceful shutdown: unbind directory connections and dispose of
        database engines.
        """
        logger.info("Shutting down mw-federated-auth")
        if get_domain_manager.cache_info().currsize:
            await get_domain_manager().close()
        await dispose_engines()

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
