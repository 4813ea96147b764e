"""
Application factory.

Builds the FastAPI application: lifespan, error handlers and routes.
"""
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from hcbilling.config.database import init_db
from hcbilling.utils.errors import (
    AppError,
    app_error_handler,
    general_exception_handler,
    validation_error_handler,
)
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)


def create_lifespan() -> Callable:
    """
    Create application lifespan context manager.

    Returns:
        Async context manager for application startup and shutdown events.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("Starting application...")
        init_db()
        logger.info("Application started successfully")
        yield
        logger.info("Shutting down application...")

    return lifespan


def setup_error_handlers(app: FastAPI) -> None:
    """
    Register all application error handlers.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Error handlers registered successfully")


def register_routes(app: FastAPI) -> None:
    """
    Register all API route routers under ``/api/v1``.

    Args:
        app: FastAPI application instance
    """
    from hcbilling.api.routes import (
        appointments,
        claims,
        health,
        imports,
        payments,
        remits,
        reports,
    )

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(claims.router, prefix="/api/v1", tags=["claims"])
    app.include_router(remits.router, prefix="/api/v1", tags=["remits"])
    app.include_router(payments.router, prefix="/api/v1", tags=["payments"])
    app.include_router(imports.router, prefix="/api/v1", tags=["imports"])
    app.include_router(appointments.router, prefix="/api/v1", tags=["appointments"])
    app.include_router(reports.router, prefix="/api/v1", tags=["reports"])

    logger.info("Routes registered successfully")


def create_application() -> FastAPI:
    """
    Create and configure FastAPI application instance.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="hcbilling",
        description="Healthcare billing reconciliation between EDI claims, remittances and accounting",
        version="1.0.0",
        lifespan=create_lifespan(),
    )

    setup_error_handlers(app)
    register_routes(app)

    return app
