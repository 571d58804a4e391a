"""
Driver Trip Progress API Endpoints.

Drivers move their shipment through the trip stages, one step at a time.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from freight_tracking.app.core.guards import require_role, DRIVER_ROLES
from freight_tracking.app.core.redis_client import get_redis
from freight_tracking.app.db.session import get_db
from freight_tracking.app.domain.trip_progress.status_machine import (
    can_advance, next_status, status_label
)
from freight_tracking.app.domain.trip_progress.trip_progress_service import TripProgressService
from freight_tracking.app.schemas.trip_progress import (
    AdvanceRequest, AdvanceResult, ProgressEvidence, ProgressStateResponse, TripProgressResponse
)

router = APIRouter(prefix="/driver", tags=["Driver - Trip Progress"])


@router.post("/shipments/{shipment_id}/progress", response_model=AdvanceResult)
async def advance_shipment_status(
    request: AdvanceRequest,
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role(DRIVER_ROLES)),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """
    Advance the shipment to ``status`` (Driver only).

    Same stage again succeeds as a no-op. Going back or skipping a stage
    is rejected with 400 and a message naming the stages involved.
    """
    return await TripProgressService.advance(
        db,
        shipment_id=shipment_id,
        driver_id=current_user["user_id"],
        requested_status=request.status,
        evidence=ProgressEvidence(lat=request.lat, lng=request.lng, notes=request.notes),
        redis=redis,
    )


@router.post("/shipments/{shipment_id}/progress/next", response_model=AdvanceResult)
async def advance_to_next_stage(
    shipment_id: int = Path(..., description="Shipment ID"),
    evidence: Optional[ProgressEvidence] = Body(None),
    current_user: dict = Depends(require_role(DRIVER_ROLES)),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """Advance the shipment to the stage after its current one."""
    return await TripProgressService.advance_to_next(
        db,
        shipment_id=shipment_id,
        driver_id=current_user["user_id"],
        evidence=evidence,
        redis=redis,
    )


@router.get("/shipments/{shipment_id}/progress", response_model=ProgressStateResponse)
async def get_shipment_progress(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(require_role(DRIVER_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    current, progress = await TripProgressService.get_progress(db, shipment_id, current_user["user_id"])
    upcoming = next_status(current)

    return ProgressStateResponse(
        shipment_id=shipment_id,
        current_status=current,
        current_status_label=status_label(current),
        next_status=upcoming,
        next_status_label=status_label(upcoming) if upcoming else None,
        can_advance=can_advance(current),
        progress=TripProgressResponse.model_validate(progress) if progress else None,
    )
