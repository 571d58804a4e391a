"""
Tracking runtime.

Process-wide wiring of the long-lived tracking components. Built once at
startup and handed to endpoints through ``get_tracking_runtime``.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from freight_tracking.app.core.config import settings
from freight_tracking.app.domain.trip_progress.trip_progress_service import (
    add_status_listener, remove_status_listener
)
from freight_tracking.app.services.incident_sink import IncidentSink
from freight_tracking.app.services.location_reporter import LocationReporter
from freight_tracking.app.services.location_store import LocationStore
from freight_tracking.app.services.monitoring import MonitoringCoordinator
from freight_tracking.app.services.notification_service import Notifier
from freight_tracking.app.services.position_source import (
    FixBufferPositionSource, PositionSource, TelematicsPositionSource
)

logger = logging.getLogger(__name__)


class TrackingRuntime:

    def __init__(self, session_factory: async_sessionmaker, source: Optional[PositionSource] = None):
        self.store = LocationStore(session_factory)
        self.notifier = Notifier(session_factory)
        self.sink = IncidentSink(session_factory, self.notifier)
        self.reporter = LocationReporter(self.store)

        self.fix_buffer: Optional[FixBufferPositionSource] = None
        if source is None:
            source = self._build_source()
        if isinstance(source, FixBufferPositionSource):
            self.fix_buffer = source
        self.source = source

        self.coordinator = MonitoringCoordinator(
            source=self.source,
            reporter=self.reporter,
            store=self.store,
            sink=self.sink,
            notifier=self.notifier,
        )
        add_status_listener(self.coordinator.on_status_changed)

    @staticmethod
    def _build_source() -> PositionSource:
        if settings.position_provider == "telematics":
            if not settings.telematics_base_url:
                raise ValueError("TELEMATICS_BASE_URL is required when POSITION_PROVIDER=telematics")
            logger.info("Using telematics position source at %s", settings.telematics_base_url)
            return TelematicsPositionSource(settings.telematics_base_url, settings.telematics_api_key)
        return FixBufferPositionSource()

    async def shutdown(self) -> None:
        remove_status_listener(self.coordinator.on_status_changed)
        await self.coordinator.shutdown()
        await self.notifier.drain()
        if isinstance(self.source, TelematicsPositionSource):
            await self.source.aclose()


_runtime: Optional[TrackingRuntime] = None


def init_tracking_runtime(session_factory: async_sessionmaker) -> TrackingRuntime:
    global _runtime
    _runtime = TrackingRuntime(session_factory)
    return _runtime


async def shutdown_tracking_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.shutdown()
        _runtime = None


def get_tracking_runtime() -> TrackingRuntime:
    """FastAPI dependency; initialised lazily outside the app lifespan."""
    global _runtime
    if _runtime is None:
        from freight_tracking.app.db.session import AsyncSessionLocal
        _runtime = TrackingRuntime(AsyncSessionLocal)
    return _runtime
