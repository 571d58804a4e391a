"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from freight_tracking.app.api.v1.endpoints import (
    trip_progress, location, monitoring, incidents
)

router = APIRouter()

# Driver endpoints
router.include_router(trip_progress.router)
router.include_router(location.router)

# Operator endpoints
router.include_router(monitoring.router)
router.include_router(incidents.router)
