"""
Driver Location API Endpoints.

Live location reports from the driver app, plus the raw device fix feed
consumed by the GPS health monitor.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from freight_tracking.app.core.guards import require_role, DRIVER_ROLES
from freight_tracking.app.schemas.tracking import (
    LocationReportRequest, LocationReportResponse, LocationSample, GpsFixRequest, DriverLocationResponse
)
from freight_tracking.app.services.location_reporter import RejectReason
from freight_tracking.app.services.runtime import TrackingRuntime, get_tracking_runtime

router = APIRouter(prefix="/driver", tags=["Driver - Location"])


@router.post("/location", response_model=LocationReportResponse)
async def report_location(
    request: LocationReportRequest,
    current_user: dict = Depends(require_role(DRIVER_ROLES)),
    runtime: TrackingRuntime = Depends(get_tracking_runtime)
):
    """
    Report the driver's current location (Driver only).

    Throttled and in-flight reports return ``accepted=false`` with a reason.
    A failed current-location write is returned as 503.
    """
    sample = LocationSample(**request.model_dump(exclude={"shipment_id"}))
    outcome = await runtime.reporter.submit(current_user["user_id"], sample, request.shipment_id)

    if outcome.reason == RejectReason.FATAL:
        raise outcome.fatal_error

    return LocationReportResponse(accepted=outcome.accepted, reason=outcome.reason)


@router.get("/location", response_model=DriverLocationResponse)
async def get_my_location(
    current_user: dict = Depends(require_role(DRIVER_ROLES)),
    runtime: TrackingRuntime = Depends(get_tracking_runtime)
):
    location = await runtime.store.get_current_location(current_user["user_id"])
    if not location:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No location reported yet"
        )
    return location


@router.post("/gps-fixes", status_code=status.HTTP_202_ACCEPTED)
async def push_gps_fix(
    fix: GpsFixRequest,
    current_user: dict = Depends(require_role(DRIVER_ROLES)),
    runtime: TrackingRuntime = Depends(get_tracking_runtime)
):
    """
    Push a raw device fix, or the device's acquisition error.

    The next monitor tick for this driver consumes it.
    """
    if runtime.fix_buffer is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Device fixes are not accepted while a telematics provider is configured"
        )

    runtime.fix_buffer.push(current_user["user_id"], fix)
    return {"buffered": True}
