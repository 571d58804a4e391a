"""
Incident sink.

Persists incident reports and fans them out to the operator desk and,
when known, to the shipment's shipper.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from freight_tracking.app.core.exceptions import PersistenceError
from freight_tracking.app.models.incident import (
    Incident, IncidentType, IncidentSeverity, INCIDENT_TYPE_LABELS
)
from freight_tracking.app.models.shipment import Shipment
from freight_tracking.app.services.notification_service import Notifier

logger = logging.getLogger(__name__)


class IncidentSink:

    def __init__(self, session_factory: async_sessionmaker, notifier: Notifier):
        self._session_factory = session_factory
        self._notifier = notifier

    async def create_incident(
        self,
        shipment_id: int,
        incident_type: IncidentType,
        severity: IncidentSeverity,
        description: str,
        evidence: Optional[Dict[str, Any]] = None,
        driver_id: Optional[int] = None,
        last_known_lat: Optional[float] = None,
        last_known_lng: Optional[float] = None,
        dedupe_key: Optional[str] = None,
    ) -> Incident:
        """
        Persist an incident and notify operators and the shipper.

        Raises:
            PersistenceError: If the incident row cannot be written
        """
        try:
            async with self._session_factory() as db:
                incident = Incident(
                    shipment_id=shipment_id,
                    driver_id=driver_id,
                    incident_type=incident_type,
                    severity=severity,
                    description=description,
                    last_known_lat=last_known_lat,
                    last_known_lng=last_known_lng,
                    evidence_data=evidence,
                    dedupe_key=dedupe_key,
                )
                db.add(incident)
                await db.commit()
                await db.refresh(incident)

                shipment = await db.get(Shipment, shipment_id)
                shipper_id = shipment.shipper_id if shipment else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Incident write failed: {e}", operation="create_incident") from e

        logger.warning(
            "Incident created",
            extra={
                "incident_id": incident.id,
                "shipment_id": shipment_id,
                "incident_type": incident_type.value,
                "severity": severity.value,
            }
        )

        label = INCIDENT_TYPE_LABELS.get(incident_type, incident_type.value)
        title = f"[{severity.value}] {label} on shipment {shipment_id}"
        metadata = {"incident_id": incident.id, "shipment_id": shipment_id}
        self._notifier.notify_operators(title, description, metadata=metadata)
        if shipper_id is not None:
            self._notifier.notify_user(shipper_id, title, description, metadata=metadata)

        return incident
