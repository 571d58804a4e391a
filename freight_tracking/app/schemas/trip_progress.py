"""
Trip progress schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class ProgressEvidence(BaseModel):
    """Optional evidence attached to a stage advance."""
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    notes: Optional[str] = Field(None, max_length=1000)


class AdvanceRequest(ProgressEvidence):
    """Schema for advancing a shipment's trip stage."""
    status: str = Field(..., min_length=1, max_length=64)


class AdvanceResult(BaseModel):
    """Result of an accepted advance (rejections raise ValidationError)."""
    success: bool = True
    idempotent: bool = False
    message: str
    progress_id: Optional[int] = None
    previous_status: str
    new_status: str
    new_status_label: str
    timestamp: datetime


class TripProgressResponse(BaseModel):
    """Persisted trip progress."""
    id: int
    shipment_id: int
    driver_id: int
    assignment_id: Optional[int]
    current_status: str
    accepted_at: Optional[datetime]
    loading_at: Optional[datetime]
    loaded_at: Optional[datetime]
    in_transit_at: Optional[datetime]
    delivered_pending_confirmation_at: Optional[datetime]
    delivered_at: Optional[datetime]
    completed_at: Optional[datetime]
    last_lat: Optional[float]
    last_lng: Optional[float]
    driver_notes: Optional[str]

    class Config:
        from_attributes = True


class ProgressStateResponse(BaseModel):
    """Current stage of a shipment as seen by its driver."""
    shipment_id: int
    current_status: str
    current_status_label: str
    next_status: Optional[str] = None
    next_status_label: Optional[str] = None
    can_advance: bool
    progress: Optional[TripProgressResponse] = None
