"""
Signal loss watchdog.

A single deadline per session, pushed back by every accepted location
update. When it expires the driver is warned and given a grace period;
if nothing arrives in that window a SIGNAL_LOST incident is raised.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from freight_tracking.app.core.config import settings
from freight_tracking.app.models.incident import IncidentType, IncidentSeverity
from freight_tracking.app.schemas.tracking import LocationSample
from freight_tracking.app.services.incident_sink import IncidentSink
from freight_tracking.app.services.notification_service import Notifier

logger = logging.getLogger(__name__)


class SignalLossWatchdog:

    def __init__(
        self,
        shipment_id: int,
        driver_id: int,
        sink: IncidentSink,
        notifier: Optional[Notifier] = None,
        threshold_seconds: float = None,
        grace_seconds: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.shipment_id = shipment_id
        self.driver_id = driver_id
        self._sink = sink
        self._notifier = notifier
        self.threshold = settings.signal_loss_threshold_seconds if threshold_seconds is None else threshold_seconds
        self.grace = settings.signal_loss_grace_seconds if grace_seconds is None else grace_seconds
        self._clock = clock

        self.signal_lost = False
        self.escalated = False
        self.last_sample: Optional[LocationSample] = None
        self.last_update_at: float = clock()

        self._stopped = False
        self._task: Optional[asyncio.Task] = None
        self._escalation: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Arm the deadline from now."""
        if self._stopped or self.armed:
            return
        self.last_update_at = self._clock()
        self._arm()

    def reset(self, sample: Optional[LocationSample] = None) -> None:
        """Record an update: clear the lost flag and push the deadline back."""
        if self._stopped:
            return
        if sample is not None:
            self.last_sample = sample
        self.last_update_at = self._clock()

        if self.signal_lost:
            logger.info("Signal recovered for shipment %s driver %s", self.shipment_id, self.driver_id)
        self.signal_lost = False
        self.escalated = False

        self._cancel()
        self._arm()

    async def stop(self) -> None:
        """Cancel any pending deadline. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        task = self._cancel()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

        escalation, self._escalation = self._escalation, None
        if escalation is not None and not escalation.done():
            await escalation

    def _arm(self) -> None:
        self._task = asyncio.create_task(
            self._watch(), name=f"signal-watchdog-{self.shipment_id}-{self.driver_id}"
        )

    def _cancel(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _watch(self) -> None:
        await asyncio.sleep(self.threshold)

        self.signal_lost = True
        logger.warning(
            "No location update for shipment %s driver %s in %.0fs",
            self.shipment_id, self.driver_id, self.threshold
        )
        if self._notifier is not None:
            self._notifier.notify_user(
                self.driver_id,
                "GPS signal lost",
                f"We have not received your location for {self.threshold:.0f} seconds. "
                f"Check your GPS; the shipper will be alerted in {self.grace:.0f} seconds.",
                metadata={"shipment_id": self.shipment_id},
            )

        await asyncio.sleep(self.grace)

        # Past the grace period a reset no longer cancels the incident write
        self._escalation = asyncio.create_task(
            self._escalate(), name=f"signal-escalation-{self.shipment_id}-{self.driver_id}"
        )
        await asyncio.shield(self._escalation)

    async def _escalate(self) -> None:
        since = self.last_update_at
        duration = self._clock() - since
        sample = self.last_sample
        last_location = (
            {"lat": sample.latitude, "lng": sample.longitude, "recorded_at": sample.recorded_at.isoformat()}
            if sample else None
        )

        try:
            await self._sink.create_incident(
                shipment_id=self.shipment_id,
                incident_type=IncidentType.SIGNAL_LOST,
                severity=IncidentSeverity.HIGH,
                description=(
                    f"GPS signal lost for {duration:.0f} seconds during active transport. "
                    f"Driver: {self.driver_id}."
                ),
                evidence={
                    "last_location": last_location,
                    "signal_loss_duration": round(duration, 1),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
                driver_id=self.driver_id,
                last_known_lat=sample.latitude if sample else None,
                last_known_lng=sample.longitude if sample else None,
                dedupe_key=f"{IncidentType.SIGNAL_LOST.value}:{self.shipment_id}:{self.driver_id}",
            )
        except Exception:
            logger.error("Signal loss incident for shipment %s could not be created", self.shipment_id, exc_info=True)
            return

        # An update that arrived during the write has already cleared the outage
        if self.last_update_at == since:
            self.escalated = True
