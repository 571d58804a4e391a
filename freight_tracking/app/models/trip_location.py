"""
Location database models.

- DriverCurrentLocation: one row per driver, overwritten on every report.
- ShipmentLocation: append-only GPS breadcrumb trail scoped to a shipment.
- AffiliatedDriverTracking: fleet view kept by transport companies.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime
from sqlalchemy.sql import func
from freight_tracking.app.db.session import Base


class DriverCurrentLocation(Base):
    """
    Current location of a driver (upsert, last write wins).
    """
    __tablename__ = "driver_current_locations"

    driver_id = Column(Integer, ForeignKey('users.id'), primary_key=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)

    recorded_at = Column(DateTime(timezone=True), nullable=False)  # When GPS was recorded
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<DriverCurrentLocation(driver_id={self.driver_id}, lat={self.latitude}, lng={self.longitude})>"


class ShipmentLocation(Base):
    """
    Shipment Location model.

    Records GPS coordinates for audit and route replay.
    """
    __tablename__ = "shipment_locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)

    recorded_at = Column(DateTime(timezone=True), nullable=False)  # When GPS was recorded
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)  # When inserted to DB

    def __repr__(self):
        return f"<ShipmentLocation(shipment_id={self.shipment_id}, lat={self.latitude}, lng={self.longitude})>"


class AffiliatedDriverTracking(Base):
    """
    Tracking row kept for drivers affiliated to a transport company.
    """
    __tablename__ = "affiliated_driver_tracking"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    current_shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=True)

    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    last_gps_update = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<AffiliatedDriverTracking(driver_id={self.driver_id}, company_id={self.company_id})>"
