"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from . import models  # noqa: F401  registers tables on Base.metadata
from .core.config import API_VERSION, SERVICE_NAME, settings
from .core.database import async_session_factory, close_db, engine, init_db
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
    request_validation_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import (
    booking_router,
    guide_router,
    health_router,
    metrics_router,
    offer_router,
    payments_router,
    pricing_router,
    slot_router,
    sweep_router,
    tour_router,
)
from .workers.manager import worker_manager

setup_structured_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Sets up observability and the schema, then runs the lifecycle sweepers
    in the background until shutdown.
    """
    logger.info(
        "Starting tour engine",
        extra={"environment": settings.environment, "debug": settings.debug}
    )

    try:
        setup_tracing()
        setup_metrics()
        instrument_sqlalchemy(engine)

        await init_db()
        logger.info("Database initialized successfully")

        if settings.workers_enabled:
            await worker_manager.start_all()
    except Exception as e:
        logger.error("Failed to initialize application", extra={"error": str(e)})
        raise

    yield

    logger.info("Shutting down tour engine")
    try:
        await worker_manager.stop_all()
        await close_db()
    except Exception as e:
        logger.error("Error during application cleanup", extra={"error": str(e)})

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Tour Engine API",
        description=(
            "Tour date inventory, guide pricing policies, custom offer lifecycle "
            "and payment-confirmed booking materialization for a guided-hiking marketplace"
        ),
        version=API_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "traceparent", "tracestate"],
    )

    setup_middleware(app, enable_logging=True)

    instrument_fastapi(app)

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Health Check",
        description="Check if the service is healthy and responsive",
        response_model=dict,
    )
    async def health_check():
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": API_VERSION,
            "environment": settings.environment,
        }

    @app.get(
        "/ready",
        tags=["Health"],
        summary="Readiness Check",
        description="Check that the database accepts queries",
        response_model=dict,
    )
    async def readiness_check():
        """Readiness check that runs a trivial query against the database."""
        try:
            async with async_session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning("Readiness check failed", extra={"error": str(e)})
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "service": SERVICE_NAME, "checks": {"database": "error"}},
            )

        return {
            "status": "ready",
            "service": SERVICE_NAME,
            "checks": {"database": "ok"},
        }

    @app.get(
        "/info",
        status_code=status.HTTP_200_OK,
        tags=["Info"],
        summary="Service Information",
        description="Get detailed information about the service",
        response_model=dict,
    )
    async def service_info():
        return {
            "service": SERVICE_NAME,
            "version": API_VERSION,
            "environment": settings.environment,
            "features": {
                "guide_authentication": True,
                "idempotency": True,
                "tracing": bool(settings.otlp_endpoint),
                "problem_details": True,
                "background_sweepers": settings.workers_enabled,
            },
            "settings": {
                "offer_ttl_days": settings.offer_ttl_days,
                "abandoned_booking_grace_minutes": settings.abandoned_booking_grace_minutes,
                "limited_availability_threshold": settings.limited_availability_threshold,
                "max_discount_percent": str(settings.max_discount_percent),
                "min_price": str(settings.min_price),
            },
            "endpoints": {
                "health": "/health",
                "readiness": "/ready",
                "info": "/info",
                "metrics": "/metrics",
                "docs": "/docs" if settings.debug else None,
            },
        }

    app.include_router(health_router)
    app.include_router(tour_router)
    app.include_router(guide_router)
    app.include_router(slot_router)
    app.include_router(pricing_router)
    app.include_router(booking_router)
    app.include_router(offer_router)
    app.include_router(payments_router)
    app.include_router(sweep_router)
    app.include_router(metrics_router)

    logger.info("FastAPI application created and configured")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tourengine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
