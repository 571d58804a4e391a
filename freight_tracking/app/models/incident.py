"""
Incident database model.

Incidents are written by the monitoring loops and never mutated here;
resolution belongs to the operator tooling.
"""

from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from freight_tracking.app.db.session import Base
import enum


class IncidentType(str, enum.Enum):
    GPS_ACQUISITION_FAILURE = "GPS_ACQUISITION_FAILURE"
    SIGNAL_LOST = "SIGNAL_LOST"
    ROUTE_DEVIATION = "ROUTE_DEVIATION"
    SUSPECTED_SPOOFING = "SUSPECTED_SPOOFING"
    OTHER = "OTHER"


class IncidentSeverity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IncidentStatus(str, enum.Enum):
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    REPORTED_TO_AUTHORITIES = "REPORTED_TO_AUTHORITIES"


INCIDENT_TYPE_LABELS = {
    IncidentType.GPS_ACQUISITION_FAILURE: "GPS acquisition failure",
    IncidentType.SIGNAL_LOST: "Signal lost",
    IncidentType.ROUTE_DEVIATION: "Route deviation",
    IncidentType.SUSPECTED_SPOOFING: "Suspected location spoofing",
    IncidentType.OTHER: "Other",
}


class Incident(Base):
    """
    Incident log entry.
    """
    __tablename__ = "incident_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    incident_type = Column(Enum(IncidentType), nullable=False, index=True)
    severity = Column(Enum(IncidentSeverity), nullable=False)
    status = Column(Enum(IncidentStatus), default=IncidentStatus.OPEN, nullable=False, index=True)

    description = Column(Text, nullable=True)
    last_known_lat = Column(Float, nullable=True)
    last_known_lng = Column(Float, nullable=True)
    evidence_data = Column(JSON, nullable=True)

    dedupe_key = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Incident(id={self.id}, shipment={self.shipment_id}, type='{self.incident_type.value}')>"
