"""
Location store.

Persistence operations consumed by the location reporter and the
monitoring loops. Each call runs in its own short session and commits on
its own: the fan-out writes are independent, last write wins.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from freight_tracking.app.core.exceptions import PersistenceError
from freight_tracking.app.models.shipment import Shipment
from freight_tracking.app.models.trip_location import (
    DriverCurrentLocation, ShipmentLocation, AffiliatedDriverTracking
)
from freight_tracking.app.models.user import User
from freight_tracking.app.schemas.tracking import LocationSample

logger = logging.getLogger(__name__)


class NotAffiliatedError(Exception):
    """The driver has no affiliated-fleet tracking row for this shipment."""


class LocationStore:

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_authoritative_shipment_status(self, shipment_id: int) -> Optional[str]:
        """
        Read the shipment status used by the liveness check.

        Returns:
            Status string, or None when the shipment does not exist

        Raises:
            PersistenceError: If the read fails
        """
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Shipment.status).where(Shipment.id == shipment_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Shipment status lookup failed: {e}", operation="shipment_status") from e

    async def upsert_current_location(self, driver_id: int, sample: LocationSample) -> None:
        try:
            async with self._session_factory() as db:
                current = await db.get(DriverCurrentLocation, driver_id)
                if current is None:
                    current = DriverCurrentLocation(driver_id=driver_id)
                    db.add(current)

                current.latitude = sample.latitude
                current.longitude = sample.longitude
                current.accuracy_meters = sample.accuracy_meters
                current.heading = sample.heading
                current.speed = sample.speed
                current.recorded_at = sample.recorded_at

                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Current location write failed: {e}", operation="current_location") from e

    async def update_fallback_location(self, driver_id: int, sample: LocationSample) -> None:
        """Keep the legacy location columns on the user row in sync."""
        try:
            async with self._session_factory() as db:
                user = await db.get(User, driver_id)
                if user is None:
                    raise PersistenceError(f"Driver {driver_id} not found", operation="fallback_location")

                user.current_lat = sample.latitude
                user.current_lng = sample.longitude
                user.last_gps_update = sample.recorded_at

                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Fallback location write failed: {e}", operation="fallback_location") from e

    async def append_location_history(self, driver_id: int, shipment_id: int, sample: LocationSample) -> None:
        try:
            async with self._session_factory() as db:
                db.add(ShipmentLocation(
                    shipment_id=shipment_id,
                    driver_id=driver_id,
                    latitude=sample.latitude,
                    longitude=sample.longitude,
                    accuracy_meters=sample.accuracy_meters,
                    heading=sample.heading,
                    speed=sample.speed,
                    recorded_at=sample.recorded_at,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Location history write failed: {e}", operation="location_history") from e

    async def update_affiliated_location(self, driver_id: int, shipment_id: int, sample: LocationSample) -> None:
        """
        Update the transport company's view of an affiliated driver.

        Raises:
            NotAffiliatedError: If the driver is not affiliated for this shipment
            PersistenceError: If the write fails
        """
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AffiliatedDriverTracking).where(
                        AffiliatedDriverTracking.driver_id == driver_id,
                        AffiliatedDriverTracking.current_shipment_id == shipment_id
                    )
                )
                rows = result.scalars().all()
                if not rows:
                    raise NotAffiliatedError(f"Driver {driver_id} is not affiliated for shipment {shipment_id}")

                now = datetime.now(timezone.utc)
                for row in rows:
                    row.current_lat = sample.latitude
                    row.current_lng = sample.longitude
                    row.last_gps_update = now

                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Affiliated tracking write failed: {e}", operation="affiliated_location") from e

    async def get_current_location(self, driver_id: int) -> Optional[DriverCurrentLocation]:
        try:
            async with self._session_factory() as db:
                return await db.get(DriverCurrentLocation, driver_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Current location read failed: {e}", operation="current_location") from e
