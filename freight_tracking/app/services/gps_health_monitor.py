"""
GPS Health Monitor.

Per-session polling loop: IDLE -> ACTIVE -> STOPPED.

Each tick acquires a sample under a bounded timeout. Successes reset the
consecutive-failure counter and are reported; failures are counted. Once
the counter reaches the threshold the monitor escalates, in this order:

1. cool-down: skip if this session escalated within the window
2. liveness: skip and reset the counter unless the shipment is still active
3. incident: GPS_ACQUISITION_FAILURE / CRITICAL, escalation time recorded
"""

import asyncio
import enum
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from freight_tracking.app.core.config import settings
from freight_tracking.app.core.exceptions import PersistenceError
from freight_tracking.app.models.incident import IncidentType, IncidentSeverity
from freight_tracking.app.schemas.tracking import LocationSample
from freight_tracking.app.services.incident_sink import IncidentSink
from freight_tracking.app.services.location_reporter import LocationReporter
from freight_tracking.app.services.location_store import LocationStore, NotAffiliatedError
from freight_tracking.app.services.notification_service import Notifier
from freight_tracking.app.services.position_source import AcquisitionFailure, PositionSource

logger = logging.getLogger(__name__)


class MonitorState(str, enum.Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    STOPPED = "STOPPED"


class GPSHealthMonitor:

    def __init__(
        self,
        shipment_id: int,
        driver_id: int,
        source: PositionSource,
        reporter: LocationReporter,
        store: LocationStore,
        sink: IncidentSink,
        notifier: Optional[Notifier] = None,
        interval_seconds: float = None,
        acquire_timeout_seconds: float = None,
        failure_threshold: int = None,
        cooldown_seconds: float = None,
        active_statuses: Iterable[str] = None,
        dedupe_key: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.shipment_id = shipment_id
        self.driver_id = driver_id
        self._source = source
        self._reporter = reporter
        self._store = store
        self._sink = sink
        self._notifier = notifier

        self.interval = settings.gps_poll_interval_seconds if interval_seconds is None else interval_seconds
        self.acquire_timeout = (
            settings.gps_acquire_timeout_seconds if acquire_timeout_seconds is None else acquire_timeout_seconds
        )
        self.failure_threshold = settings.gps_failure_threshold if failure_threshold is None else failure_threshold
        self.cooldown = settings.incident_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        self.active_statuses = frozenset(
            settings.active_shipment_statuses if active_statuses is None else active_statuses
        )
        self.dedupe_key = dedupe_key or f"{IncidentType.GPS_ACQUISITION_FAILURE.value}:{shipment_id}:{driver_id}"
        self._clock = clock

        self.state = MonitorState.IDLE
        self.consecutive_failures = 0
        self.last_error: Optional[AcquisitionFailure] = None
        self.last_escalation_at: Optional[float] = None
        self.last_escalation_wallclock: Optional[datetime] = None

        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # Lifecycle

    def start(self) -> None:
        if self.state != MonitorState.IDLE:
            return
        self.state = MonitorState.ACTIVE
        self._task = asyncio.create_task(
            self._run(), name=f"gps-monitor-{self.shipment_id}-{self.driver_id}"
        )
        logger.info("GPS monitoring started for shipment %s driver %s", self.shipment_id, self.driver_id)

    async def stop(self) -> None:
        """Stop the loop. Safe to call repeatedly."""
        if self.state == MonitorState.STOPPED:
            return
        self.state = MonitorState.STOPPED
        self._stop_event.set()

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("GPS monitoring stopped for shipment %s driver %s", self.shipment_id, self.driver_id)

    async def _run(self) -> None:
        while self.state == MonitorState.ACTIVE:
            try:
                await self.tick()
            except Exception:
                # A broken tick must not end the session
                logger.exception("GPS monitor tick failed for shipment %s", self.shipment_id)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    # One poll

    async def tick(self) -> None:
        try:
            sample = await asyncio.wait_for(self._source.acquire(self.driver_id), timeout=self.acquire_timeout)
        except asyncio.TimeoutError:
            await self._on_failure(AcquisitionFailure(
                f"No fix within {self.acquire_timeout:.0f}s", AcquisitionFailure.TIMEOUT
            ))
            return
        except AcquisitionFailure as e:
            await self._on_failure(e)
            return

        await self._on_success(sample)

    async def _on_success(self, sample: LocationSample) -> None:
        self.consecutive_failures = 0
        self.last_error = None

        await self._reporter.report(self.driver_id, sample, self.shipment_id)

        try:
            await self._store.update_affiliated_location(self.driver_id, self.shipment_id, sample)
        except NotAffiliatedError:
            pass
        except PersistenceError as e:
            logger.warning("Affiliated tracking update failed for driver %s: %s", self.driver_id, e.message)

    async def _on_failure(self, error: AcquisitionFailure) -> None:
        self.consecutive_failures += 1
        self.last_error = error
        logger.warning(
            "GPS acquisition failed for driver %s (%d/%d): code=%s %s",
            self.driver_id, self.consecutive_failures, self.failure_threshold, error.code, error.message
        )

        if self.consecutive_failures >= self.failure_threshold:
            await self._maybe_escalate()

    # Escalation

    async def _maybe_escalate(self) -> bool:
        now = self._clock()
        if self.last_escalation_at is not None and now - self.last_escalation_at < self.cooldown:
            logger.info(
                "GPS incident for shipment %s suppressed, last sent %.0fs ago",
                self.shipment_id, now - self.last_escalation_at
            )
            return False

        if not await self._shipment_is_active():
            logger.info(
                "Shipment %s is not active, suppressing GPS incident and resetting failures",
                self.shipment_id
            )
            self.consecutive_failures = 0
            return False

        error = self.last_error
        evidence = {
            "consecutive_failures": self.consecutive_failures,
            "error_code": error.code if error else None,
            "error_message": error.message if error else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "subject_id": self.driver_id,
        }
        description = (
            f"GPS acquisition failing during active transport. Driver: {self.driver_id}. "
            f"{self.consecutive_failures} consecutive failures."
        )

        try:
            await self._sink.create_incident(
                shipment_id=self.shipment_id,
                incident_type=IncidentType.GPS_ACQUISITION_FAILURE,
                severity=IncidentSeverity.CRITICAL,
                description=description,
                evidence=evidence,
                driver_id=self.driver_id,
                dedupe_key=self.dedupe_key,
            )
        except Exception:
            logger.error("GPS incident for shipment %s could not be created", self.shipment_id, exc_info=True)
            return False

        self.last_escalation_at = now
        self.last_escalation_wallclock = datetime.now(timezone.utc)

        if self._notifier is not None:
            self._notifier.notify_user(
                self.driver_id,
                "GPS off detected",
                "Turn your location back on. The shipper has been notified.",
                metadata={"shipment_id": self.shipment_id},
            )
        return True

    async def _shipment_is_active(self) -> bool:
        try:
            status = await self._store.get_authoritative_shipment_status(self.shipment_id)
        except Exception:
            logger.warning("Liveness check failed for shipment %s", self.shipment_id, exc_info=True)
            return False
        return status is not None and status in self.active_statuses
