"""
Operator Incident API Endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freight_tracking.app.core.guards import require_role, OPERATOR_ROLES
from freight_tracking.app.db.session import get_db
from freight_tracking.app.models.incident import Incident, IncidentType, IncidentSeverity, IncidentStatus
from freight_tracking.app.schemas.monitoring import IncidentResponse

router = APIRouter(prefix="/operator", tags=["Operator - Incidents"])


@router.get("/incidents", response_model=List[IncidentResponse])
async def list_incidents(
    shipment_id: Optional[int] = Query(None),
    incident_type: Optional[IncidentType] = Query(None),
    severity: Optional[IncidentSeverity] = Query(None),
    incident_status: Optional[IncidentStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_role(OPERATOR_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """List incidents, newest first (Operator/Admin only)."""
    query = select(Incident)

    if shipment_id is not None:
        query = query.where(Incident.shipment_id == shipment_id)
    if incident_type is not None:
        query = query.where(Incident.incident_type == incident_type)
    if severity is not None:
        query = query.where(Incident.severity == severity)
    if incident_status is not None:
        query = query.where(Incident.status == incident_status)

    query = query.order_by(Incident.created_at.desc(), Incident.id.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()
