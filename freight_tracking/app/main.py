"""
FastAPI Application Entry Point.

This is the main application file for the Freight Tracking service.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from freight_tracking.app.core.config import settings
from freight_tracking.app.api.v1.router import router as api_v1_router
from freight_tracking.app.core.observability import ObservabilityMiddleware, configure_logging
from freight_tracking.app.core.redis_client import ping_redis
from freight_tracking.app.db.session import engine, Base, AsyncSessionLocal
from freight_tracking.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from freight_tracking.app.services.runtime import init_tracking_runtime, shutdown_tracking_runtime

# Import models to ensure they are registered with Base
from freight_tracking.app.models.user import User
from freight_tracking.app.models.shipment import Shipment, ShipmentAssignment
from freight_tracking.app.models.trip_progress import TripProgress, ShipmentStatusHistory
from freight_tracking.app.models.trip_location import (
    DriverCurrentLocation, ShipmentLocation, AffiliatedDriverTracking
)
from freight_tracking.app.models.incident import Incident
from freight_tracking.app.models.notification import Notification

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Builds the tracking runtime.
    3. Stops every monitoring session on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    init_tracking_runtime(AsyncSessionLocal)
    yield
    await shutdown_tracking_runtime()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip progress and live location monitoring for freight shipments",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": await ping_redis(),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
