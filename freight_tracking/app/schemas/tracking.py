"""
Location tracking schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocationSample(BaseModel):
    """A single GPS position sample."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed: Optional[float] = Field(None, ge=0)  # m/s
    recorded_at: datetime = Field(default_factory=_utcnow)


class LocationReportRequest(LocationSample):
    """Schema for reporting the driver's location."""
    shipment_id: Optional[int] = None


class LocationReportResponse(BaseModel):
    """Response after reporting a location."""
    accepted: bool
    reason: Optional[str] = None  # throttled | in_flight | fatal


class GpsFixRequest(BaseModel):
    """
    Raw device fix.

    Either coordinates or an acquisition error reported by the device
    (``error_code`` follows the Geolocation API: 1 permission denied,
    2 position unavailable, 3 timeout).
    """
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed: Optional[float] = Field(None, ge=0)
    recorded_at: datetime = Field(default_factory=_utcnow)
    error_code: Optional[int] = None
    error_message: Optional[str] = None


class DriverLocationResponse(BaseModel):
    """Current location of a driver."""
    driver_id: int
    latitude: float
    longitude: float
    accuracy_meters: Optional[float]
    heading: Optional[float]
    speed: Optional[float]
    recorded_at: datetime

    class Config:
        from_attributes = True
