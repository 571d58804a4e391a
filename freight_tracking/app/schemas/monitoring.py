"""
Monitoring session and incident schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, Optional

from freight_tracking.app.core.config import settings
from freight_tracking.app.models.incident import IncidentType, IncidentSeverity, IncidentStatus


class MonitoringOptions(BaseModel):
    """Per-session overrides of the tracking defaults."""
    poll_interval_seconds: float = Field(default_factory=lambda: settings.gps_poll_interval_seconds, gt=0)
    acquire_timeout_seconds: float = Field(default_factory=lambda: settings.gps_acquire_timeout_seconds, gt=0)
    failure_threshold: int = Field(default_factory=lambda: settings.gps_failure_threshold, ge=1)
    incident_cooldown_seconds: float = Field(default_factory=lambda: settings.incident_cooldown_seconds, ge=0)
    signal_loss_threshold_seconds: float = Field(default_factory=lambda: settings.signal_loss_threshold_seconds, gt=0)
    signal_loss_grace_seconds: float = Field(default_factory=lambda: settings.signal_loss_grace_seconds, ge=0)
    watch_signal_loss: bool = True


class StartMonitoringRequest(BaseModel):
    shipment_id: int
    driver_id: int
    options: Optional[MonitoringOptions] = None


class SessionResponse(BaseModel):
    handle: str
    shipment_id: int
    driver_id: int
    state: str
    consecutive_failures: int
    signal_lost: bool
    last_escalation_at: Optional[datetime] = None
    started_at: datetime


class IncidentResponse(BaseModel):
    id: int
    shipment_id: int
    driver_id: Optional[int]
    incident_type: IncidentType
    severity: IncidentSeverity
    status: IncidentStatus
    description: Optional[str]
    last_known_lat: Optional[float]
    last_known_lng: Optional[float]
    evidence_data: Optional[Dict[str, Any]]
    created_at: datetime

    class Config:
        from_attributes = True
