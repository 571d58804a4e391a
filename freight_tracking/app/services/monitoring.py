"""
Monitoring Coordinator.

Owns the live tracking sessions of this process. A session pairs one
GPSHealthMonitor with one SignalLossWatchdog for a (shipment, driver).

Flow:
1. start_monitoring creates and starts both loops, returns an opaque handle
2. accepted location reports reset the driver's watchdogs and feed the
   position source
3. a stage change out of the active set tears the shipment's sessions down
4. stop_monitoring / shutdown stop everything, idempotently
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from freight_tracking.app.core.config import settings
from freight_tracking.app.schemas.monitoring import MonitoringOptions
from freight_tracking.app.schemas.tracking import LocationSample
from freight_tracking.app.services.gps_health_monitor import GPSHealthMonitor, MonitorState
from freight_tracking.app.services.incident_sink import IncidentSink
from freight_tracking.app.services.location_reporter import LocationReporter
from freight_tracking.app.services.location_store import LocationStore
from freight_tracking.app.services.notification_service import Notifier
from freight_tracking.app.services.position_source import PositionSource
from freight_tracking.app.services.signal_loss_watchdog import SignalLossWatchdog

logger = logging.getLogger(__name__)


@dataclass
class TrackingSession:
    handle: str
    shipment_id: int
    driver_id: int
    options: MonitoringOptions
    monitor: GPSHealthMonitor
    watchdog: Optional[SignalLossWatchdog] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def active(self) -> bool:
        return self.monitor.state == MonitorState.ACTIVE

    @property
    def signal_lost(self) -> bool:
        return self.watchdog.signal_lost if self.watchdog else False


class MonitoringCoordinator:

    def __init__(
        self,
        source: PositionSource,
        reporter: LocationReporter,
        store: LocationStore,
        sink: IncidentSink,
        notifier: Optional[Notifier] = None,
        active_statuses: Iterable[str] = None,
    ):
        self._source = source
        self._reporter = reporter
        self._store = store
        self._sink = sink
        self._notifier = notifier
        self.active_statuses = frozenset(
            settings.active_shipment_statuses if active_statuses is None else active_statuses
        )

        self._sessions: Dict[str, TrackingSession] = {}
        self._by_pair: Dict[Tuple[int, int], str] = {}
        self._lock = asyncio.Lock()

        reporter.add_listener(self.on_location_reported)

    async def start_monitoring(
        self,
        shipment_id: int,
        driver_id: int,
        options: Optional[MonitoringOptions] = None,
    ) -> str:
        """
        Start monitoring a driver on a shipment.

        Returns:
            Session handle. A pair already being monitored keeps its session
            and returns the existing handle.
        """
        options = options or MonitoringOptions()

        async with self._lock:
            existing = self._by_pair.get((shipment_id, driver_id))
            if existing is not None:
                return existing

            handle = uuid.uuid4().hex
            monitor = GPSHealthMonitor(
                shipment_id=shipment_id,
                driver_id=driver_id,
                source=self._source,
                reporter=self._reporter,
                store=self._store,
                sink=self._sink,
                notifier=self._notifier,
                interval_seconds=options.poll_interval_seconds,
                acquire_timeout_seconds=options.acquire_timeout_seconds,
                failure_threshold=options.failure_threshold,
                cooldown_seconds=options.incident_cooldown_seconds,
                active_statuses=self.active_statuses,
            )
            watchdog = None
            if options.watch_signal_loss:
                watchdog = SignalLossWatchdog(
                    shipment_id=shipment_id,
                    driver_id=driver_id,
                    sink=self._sink,
                    notifier=self._notifier,
                    threshold_seconds=options.signal_loss_threshold_seconds,
                    grace_seconds=options.signal_loss_grace_seconds,
                )

            session = TrackingSession(
                handle=handle,
                shipment_id=shipment_id,
                driver_id=driver_id,
                options=options,
                monitor=monitor,
                watchdog=watchdog,
            )
            self._sessions[handle] = session
            self._by_pair[(shipment_id, driver_id)] = handle

            monitor.start()
            if watchdog is not None:
                watchdog.start()

        logger.info(
            "Monitoring session started",
            extra={"handle": handle, "shipment_id": shipment_id, "driver_id": driver_id}
        )
        return handle

    async def stop_monitoring(self, handle: str) -> bool:
        """Stop a session. Unknown or already stopped handles return False."""
        async with self._lock:
            session = self._sessions.pop(handle, None)
            if session is None:
                return False
            self._by_pair.pop((session.shipment_id, session.driver_id), None)

        await self._stop_session(session)
        logger.info(
            "Monitoring session stopped",
            extra={"handle": handle, "shipment_id": session.shipment_id, "driver_id": session.driver_id}
        )
        return True

    async def stop_for_shipment(self, shipment_id: int) -> int:
        handles = [h for h, s in self._sessions.items() if s.shipment_id == shipment_id]
        stopped = 0
        for handle in handles:
            if await self.stop_monitoring(handle):
                stopped += 1
        return stopped

    async def shutdown(self) -> None:
        for handle in list(self._sessions):
            await self.stop_monitoring(handle)

    def get_session(self, handle: str) -> Optional[TrackingSession]:
        return self._sessions.get(handle)

    def list_sessions(self) -> List[TrackingSession]:
        return list(self._sessions.values())

    # Hooks

    async def on_location_reported(
        self, driver_id: int, sample: LocationSample, shipment_id: Optional[int]
    ) -> None:
        sessions = [
            s for s in self._sessions.values()
            if s.driver_id == driver_id and (shipment_id is None or s.shipment_id == shipment_id)
        ]
        if not sessions:
            return

        # An accepted report is a position the monitor does not have to poll for
        self._source.record_report(driver_id, sample)
        for session in sessions:
            if session.watchdog is not None:
                session.watchdog.reset(sample)

    async def on_status_changed(self, shipment_id: int, previous_status: str, new_status: str) -> None:
        if new_status in self.active_statuses:
            return
        stopped = await self.stop_for_shipment(shipment_id)
        if stopped:
            logger.info(
                "Shipment %s moved to %s, stopped %d monitoring session(s)",
                shipment_id, new_status, stopped
            )

    @staticmethod
    async def _stop_session(session: TrackingSession) -> None:
        await session.monitor.stop()
        if session.watchdog is not None:
            await session.watchdog.stop()
