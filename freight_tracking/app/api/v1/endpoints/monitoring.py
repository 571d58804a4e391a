"""
Monitoring Session API Endpoints.

Operators start and stop live tracking sessions for a driver's shipment.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight_tracking.app.core.exceptions import ResourceNotFoundError, NotAssignedError
from freight_tracking.app.core.guards import require_role, OPERATOR_ROLES
from freight_tracking.app.db.session import get_db
from freight_tracking.app.models.shipment import Shipment, ShipmentAssignment
from freight_tracking.app.models.trip_enums import INACTIVE_ASSIGNMENT_STATUSES
from freight_tracking.app.schemas.monitoring import StartMonitoringRequest, SessionResponse
from freight_tracking.app.services.monitoring import TrackingSession
from freight_tracking.app.services.runtime import TrackingRuntime, get_tracking_runtime

router = APIRouter(prefix="/monitoring", tags=["Operator - Monitoring"])


def _to_response(session: TrackingSession) -> SessionResponse:
    return SessionResponse(
        handle=session.handle,
        shipment_id=session.shipment_id,
        driver_id=session.driver_id,
        state=session.monitor.state.value,
        consecutive_failures=session.monitor.consecutive_failures,
        signal_lost=session.signal_lost,
        last_escalation_at=session.monitor.last_escalation_wallclock,
        started_at=session.started_at,
    )


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_monitoring(
    request: StartMonitoringRequest,
    current_user: dict = Depends(require_role(OPERATOR_ROLES)),
    db: AsyncSession = Depends(get_db),
    runtime: TrackingRuntime = Depends(get_tracking_runtime)
):
    """
    Start monitoring a driver on a shipment (Operator/Admin only).

    Starting an already monitored pair returns the running session.
    """
    shipment = await db.get(Shipment, request.shipment_id)
    if not shipment:
        raise ResourceNotFoundError("Shipment", request.shipment_id)

    result = await db.execute(
        select(ShipmentAssignment.id).where(
            ShipmentAssignment.shipment_id == request.shipment_id,
            ShipmentAssignment.driver_id == request.driver_id,
            ShipmentAssignment.status.notin_(INACTIVE_ASSIGNMENT_STATUSES)
        )
    )
    if result.first() is None:
        raise NotAssignedError(request.shipment_id)

    handle = await runtime.coordinator.start_monitoring(
        request.shipment_id, request.driver_id, request.options
    )
    return _to_response(runtime.coordinator.get_session(handle))


@router.delete("/sessions/{handle}")
async def stop_monitoring(
    handle: str = Path(..., description="Session handle"),
    current_user: dict = Depends(require_role(OPERATOR_ROLES)),
    runtime: TrackingRuntime = Depends(get_tracking_runtime)
):
    """Stop a session. Stopping an unknown or stopped session is a no-op."""
    stopped = await runtime.coordinator.stop_monitoring(handle)
    return {"handle": handle, "stopped": stopped}


@router.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(
    current_user: dict = Depends(require_role(OPERATOR_ROLES)),
    runtime: TrackingRuntime = Depends(get_tracking_runtime)
):
    return [_to_response(s) for s in runtime.coordinator.list_sessions()]
