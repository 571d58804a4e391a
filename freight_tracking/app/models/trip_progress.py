"""
Trip Progress database model.

One row per (shipment, driver). Mutated only through TripProgressService,
never deleted.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.sql import func
from freight_tracking.app.db.session import Base
from freight_tracking.app.models.trip_enums import TripStage


class TripProgress(Base):
    """
    Trip Progress model.

    Stage timestamps are written once, the first time the stage is reached.
    """
    __tablename__ = "driver_trip_progress"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    assignment_id = Column(Integer, ForeignKey('shipment_assignments.id'), nullable=True)

    current_status = Column(String(40), default=TripStage.NEW.value, nullable=False)

    # Stage timestamps
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    loading_at = Column(DateTime(timezone=True), nullable=True)
    loaded_at = Column(DateTime(timezone=True), nullable=True)
    in_transit_at = Column(DateTime(timezone=True), nullable=True)
    delivered_pending_confirmation_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Evidence from the last advance
    last_lat = Column(Float, nullable=True)
    last_lng = Column(Float, nullable=True)
    driver_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('shipment_id', 'driver_id', name='uq_trip_progress_shipment_driver'),
    )

    def __repr__(self):
        return f"<TripProgress(shipment_id={self.shipment_id}, driver_id={self.driver_id}, status='{self.current_status}')>"


class ShipmentStatusHistory(Base):
    """
    Append-only audit trail of accepted status transitions.
    """
    __tablename__ = "shipment_status_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, index=True)
    status = Column(String(40), nullable=False)
    changed_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    notes = Column(Text, nullable=True)

    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<ShipmentStatusHistory(shipment_id={self.shipment_id}, status='{self.status}')>"
