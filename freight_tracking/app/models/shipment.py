"""
Shipment and assignment database models.

The shipment row holds the authoritative status read by the liveness check.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.sql import func
from freight_tracking.app.db.session import Base
from freight_tracking.app.models.trip_enums import ShipmentStatus, AssignmentStatus


class Shipment(Base):
    """
    Shipment model.

    Published by a shipper, accepted by one or more drivers through assignments.
    """
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipper_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    origin_address = Column(Text, nullable=True)
    destination_address = Column(Text, nullable=True)

    # Stored as plain string so legacy values survive round-trips
    status = Column(String(40), default=ShipmentStatus.OPEN.value, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Shipment(id={self.id}, status='{self.status}')>"


class ShipmentAssignment(Base):
    """
    Shipment assignment model.

    Links a driver to a shipment; its status mirrors the driver's trip stage.
    """
    __tablename__ = "shipment_assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    status = Column(String(40), default=AssignmentStatus.ACCEPTED.value, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<ShipmentAssignment(shipment_id={self.shipment_id}, driver_id={self.driver_id}, status='{self.status}')>"
