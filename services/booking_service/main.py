"""
Booking Service - Equipment Reservation Lifecycle

Handles devices, reservations, fault reports, roles and the audit trail.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.booking_service.api import admin, devices, issues, reservations
from services.booking_service.dependencies import BookingRuntime
from shared.config import settings
from shared.domain.exceptions import DomainException
from shared.logging_config import configure_logging

logger = structlog.get_logger(__name__)


def create_app(runtime: BookingRuntime | None = None) -> FastAPI:
    """
    Build the booking service application.

    Args:
        runtime: Prepared runtime (default: built from settings at startup)

    Returns:
        FastAPI: Configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan."""
        logger.info("Starting Booking Service")
        app.state.runtime = runtime or BookingRuntime()
        await app.state.runtime.startup()
        yield
        await app.state.runtime.shutdown()
        logger.info("Booking Service shutdown complete")

    app = FastAPI(
        title="Equipment Booking Service",
        description="Device reservation, approval and fault tracking",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Actor-Id"],
    )

    # Include routers
    app.include_router(devices.router, prefix=settings.api_v1_prefix)
    app.include_router(reservations.router, prefix=settings.api_v1_prefix)
    app.include_router(issues.router, prefix=settings.api_v1_prefix)
    app.include_router(admin.router, prefix=settings.api_v1_prefix)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        """
        Handle domain exceptions with structured error responses.

        Args:
            request: FastAPI request
            exc: Domain exception

        Returns:
            JSONResponse: Structured error response
        """
        logger.warning(
            "Domain exception",
            path=request.url.path,
            method=request.method,
            error_code=exc.error_code.value,
            status_code=exc.status_code,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_SERVER_ERROR",
                "message": str(exc) if settings.debug else "An unexpected error occurred",
                "type": type(exc).__name__,
            },
        )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check."""
        return {
            "status": "healthy",
            "service": "booking_service",
        }

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.booking_service.main:app",
        host=settings.booking_service_host,
        port=settings.booking_service_port,
        reload=settings.debug,
    )
