"""
Location Reporter.

Turns one position sample into the store writes behind the live map:

1. current location (upsert)   - fatal on failure
2. legacy fallback location    - recoverable
3. shipment location history   - recoverable, only with a shipment context

Calls are throttled per driver and single-flight: a call arriving while
another report for the same driver is running is rejected, not queued.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from freight_tracking.app.core.config import settings
from freight_tracking.app.core.exceptions import PersistenceError
from freight_tracking.app.core.single_flight import SingleFlight
from freight_tracking.app.schemas.tracking import LocationSample
from freight_tracking.app.services.location_store import LocationStore

logger = logging.getLogger(__name__)

ReportListener = Callable[[int, LocationSample, Optional[int]], Awaitable[None]]


class RejectReason:
    THROTTLED = "throttled"
    IN_FLIGHT = "in_flight"
    FATAL = "fatal"


@dataclass
class ReportOutcome:
    """
    Result of one report.

    ``accepted`` means the current-location write landed. Failed secondary
    writes are listed in ``recoverable_failures`` and do not flip it.
    """
    accepted: bool
    reason: Optional[str] = None
    fatal_error: Optional[PersistenceError] = None
    recoverable_failures: List[PersistenceError] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.accepted


class LocationReporter:

    def __init__(
        self,
        store: LocationStore,
        min_interval_seconds: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._min_interval = (
            settings.location_min_interval_seconds if min_interval_seconds is None else min_interval_seconds
        )
        self._clock = clock
        self._gate = SingleFlight()
        self._last_accepted: Dict[int, float] = {}
        self._listeners: List[ReportListener] = []

    def add_listener(self, listener: ReportListener) -> None:
        """Register a coroutine called after every accepted report."""
        self._listeners.append(listener)

    async def report(self, driver_id: int, sample: LocationSample, shipment_id: Optional[int] = None) -> bool:
        """Report a sample; True when accepted and written."""
        outcome = await self.submit(driver_id, sample, shipment_id)
        return outcome.accepted

    async def submit(self, driver_id: int, sample: LocationSample, shipment_id: Optional[int] = None) -> ReportOutcome:
        last = self._last_accepted.get(driver_id)
        if last is not None and self._clock() - last < self._min_interval:
            logger.debug("Location report throttled for driver %s", driver_id)
            return ReportOutcome(accepted=False, reason=RejectReason.THROTTLED)

        async with self._gate.try_enter(driver_id) as entered:
            if not entered:
                logger.debug("Location report already in flight for driver %s", driver_id)
                return ReportOutcome(accepted=False, reason=RejectReason.IN_FLIGHT)

            outcome = await self._write(driver_id, sample, shipment_id)
            if outcome.accepted:
                self._last_accepted[driver_id] = self._clock()

        if outcome.accepted:
            await self._notify_listeners(driver_id, sample, shipment_id)
        return outcome

    async def _write(self, driver_id: int, sample: LocationSample, shipment_id: Optional[int]) -> ReportOutcome:
        if sample.accuracy_meters is not None and sample.accuracy_meters > settings.low_accuracy_meters:
            logger.warning(
                "Low accuracy fix for driver %s: %.0fm", driver_id, sample.accuracy_meters
            )

        try:
            await self._store.upsert_current_location(driver_id, sample)
        except PersistenceError as e:
            logger.error("Current location write failed for driver %s: %s", driver_id, e.message)
            return ReportOutcome(accepted=False, reason=RejectReason.FATAL, fatal_error=e)

        outcome = ReportOutcome(accepted=True)

        try:
            await self._store.update_fallback_location(driver_id, sample)
        except PersistenceError as e:
            logger.warning("Fallback location write failed for driver %s: %s", driver_id, e.message)
            outcome.recoverable_failures.append(e)

        if shipment_id is not None:
            try:
                await self._store.append_location_history(driver_id, shipment_id, sample)
            except PersistenceError as e:
                logger.warning(
                    "Location history write failed for driver %s shipment %s: %s",
                    driver_id, shipment_id, e.message
                )
                outcome.recoverable_failures.append(e)

        return outcome

    async def _notify_listeners(self, driver_id: int, sample: LocationSample, shipment_id: Optional[int]) -> None:
        for listener in self._listeners:
            try:
                await listener(driver_id, sample, shipment_id)
            except Exception:
                logger.warning("Location report listener failed", exc_info=True)
