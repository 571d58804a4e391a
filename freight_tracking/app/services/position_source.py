"""
Position sources for the GPS health monitor.

- FixBufferPositionSource: devices push raw fixes (or their acquisition
  errors) to the API; each monitor tick consumes the newest one.
- TelematicsPositionSource: polls an HTTP telematics provider.

Both raise AcquisitionFailure when no usable sample can be produced.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx

from freight_tracking.app.core.config import settings
from freight_tracking.app.schemas.tracking import GpsFixRequest, LocationSample

logger = logging.getLogger(__name__)


class AcquisitionFailure(Exception):
    """Transient inability to obtain a position sample."""

    # Geolocation API error codes
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    def __init__(self, message: str, code: int = POSITION_UNAVAILABLE):
        super().__init__(message)
        self.code = code
        self.message = message


class PositionSource:
    """Interface: ``acquire(driver_id) -> LocationSample``."""

    async def acquire(self, driver_id: int) -> LocationSample:
        raise NotImplementedError

    def record_report(self, driver_id: int, sample: LocationSample) -> None:
        """Called with every accepted location report. No-op by default."""


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class FixBufferPositionSource(PositionSource):
    """
    Latest raw fix per driver, consumed once.

    A fix older than ``max_age_seconds`` counts as a failure, as does a
    device-reported error or the absence of any new fix since the last tick.
    Accepted location reports count as fixes too, unless they are not newer
    than the fix last handed out (the monitor reports its own samples).
    """

    def __init__(self, max_age_seconds: float = None):
        self._max_age = settings.fix_max_age_seconds if max_age_seconds is None else max_age_seconds
        self._latest: Dict[int, GpsFixRequest] = {}
        self._consumed_at: Dict[int, datetime] = {}

    def push(self, driver_id: int, fix: GpsFixRequest) -> None:
        self._latest[driver_id] = fix

    def clear(self, driver_id: int) -> None:
        self._latest.pop(driver_id, None)
        self._consumed_at.pop(driver_id, None)

    def record_report(self, driver_id: int, sample: LocationSample) -> None:
        recorded_at = _as_utc(sample.recorded_at)

        consumed_at = self._consumed_at.get(driver_id)
        if consumed_at is not None and recorded_at <= consumed_at:
            return
        pending = self._latest.get(driver_id)
        if pending is not None and _as_utc(pending.recorded_at) > recorded_at:
            return

        self._latest[driver_id] = GpsFixRequest(
            latitude=sample.latitude,
            longitude=sample.longitude,
            accuracy_meters=sample.accuracy_meters,
            heading=sample.heading,
            speed=sample.speed,
            recorded_at=recorded_at,
        )

    async def acquire(self, driver_id: int) -> LocationSample:
        fix = self._latest.pop(driver_id, None)
        if fix is None:
            raise AcquisitionFailure("No fix received since last poll", AcquisitionFailure.POSITION_UNAVAILABLE)

        if fix.error_code is not None:
            raise AcquisitionFailure(fix.error_message or "Device reported acquisition error", fix.error_code)

        if fix.latitude is None or fix.longitude is None:
            raise AcquisitionFailure("Fix without coordinates", AcquisitionFailure.POSITION_UNAVAILABLE)

        recorded_at = _as_utc(fix.recorded_at)
        age = (datetime.now(timezone.utc) - recorded_at).total_seconds()
        if age > self._max_age:
            raise AcquisitionFailure(f"Stale fix ({age:.0f}s old)", AcquisitionFailure.TIMEOUT)

        self._consumed_at[driver_id] = recorded_at
        return LocationSample(
            latitude=fix.latitude,
            longitude=fix.longitude,
            accuracy_meters=fix.accuracy_meters,
            heading=fix.heading,
            speed=fix.speed,
            recorded_at=recorded_at,
        )


class TelematicsPositionSource(PositionSource):
    """
    Polls ``GET {base_url}/devices/{driver_id}/position``.

    Expected body: ``{"lat", "lng", "accuracy", "heading", "speed", "timestamp"}``.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout_seconds: float = None):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=settings.gps_acquire_timeout_seconds if timeout_seconds is None else timeout_seconds,
        )

    async def acquire(self, driver_id: int) -> LocationSample:
        try:
            response = await self._client.get(f"/devices/{driver_id}/position")
        except httpx.TimeoutException as e:
            raise AcquisitionFailure(f"Telematics timeout: {e}", AcquisitionFailure.TIMEOUT) from e
        except httpx.HTTPError as e:
            raise AcquisitionFailure(f"Telematics request failed: {e}") from e

        if response.status_code == 404:
            raise AcquisitionFailure("Device has no position", AcquisitionFailure.POSITION_UNAVAILABLE)
        if response.status_code == 403:
            raise AcquisitionFailure("Location permission revoked on device", AcquisitionFailure.PERMISSION_DENIED)
        if response.status_code >= 400:
            raise AcquisitionFailure(f"Telematics returned {response.status_code}")

        body = response.json()
        try:
            return LocationSample(
                latitude=body["lat"],
                longitude=body["lng"],
                accuracy_meters=body.get("accuracy"),
                heading=body.get("heading"),
                speed=body.get("speed"),
                recorded_at=body.get("timestamp") or datetime.now(timezone.utc),
            )
        except (KeyError, ValueError) as e:
            raise AcquisitionFailure(f"Malformed telematics payload: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
