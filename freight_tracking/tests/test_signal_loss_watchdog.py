"""
Signal loss watchdog tests (short real timers).
"""

import asyncio

import pytest

from freight_tracking.app.models.incident import IncidentType, IncidentSeverity
from freight_tracking.app.schemas.tracking import LocationSample
from freight_tracking.app.services.signal_loss_watchdog import SignalLossWatchdog


class FakeSink:
    def __init__(self):
        self.incidents = []

    async def create_incident(self, **kwargs):
        self.incidents.append(kwargs)
        return kwargs


class SlowSink(FakeSink):
    """Holds each write open until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def create_incident(self, **kwargs):
        self.entered.set()
        await self.release.wait()
        return await super().create_incident(**kwargs)


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def notify_user(self, user_id, title, message, **kwargs):
        self.sent.append((user_id, title))


def _watchdog(sink, notifier, threshold=0.05, grace=0.05):
    return SignalLossWatchdog(
        shipment_id=7,
        driver_id=3,
        sink=sink,
        notifier=notifier,
        threshold_seconds=threshold,
        grace_seconds=grace,
    )


@pytest.mark.asyncio
async def test_silence_warns_then_escalates_once():
    sink, notifier = FakeSink(), FakeNotifier()
    watchdog = _watchdog(sink, notifier)
    watchdog.start()
    watchdog.reset(LocationSample(latitude=-23.5, longitude=-46.6))

    await asyncio.sleep(0.07)
    assert watchdog.signal_lost
    assert notifier.sent == [(3, "GPS signal lost")]
    assert sink.incidents == []

    await asyncio.sleep(0.1)
    assert len(sink.incidents) == 1
    incident = sink.incidents[0]
    assert incident["incident_type"] == IncidentType.SIGNAL_LOST
    assert incident["severity"] == IncidentSeverity.HIGH
    assert incident["last_known_lat"] == -23.5
    assert incident["evidence"]["last_location"]["lng"] == -46.6
    assert incident["evidence"]["signal_loss_duration"] >= 0.05

    # Idle until the next reset
    await asyncio.sleep(0.15)
    assert len(sink.incidents) == 1
    assert not watchdog.armed

    await watchdog.stop()


@pytest.mark.asyncio
async def test_update_during_grace_cancels_escalation():
    sink, notifier = FakeSink(), FakeNotifier()
    watchdog = _watchdog(sink, notifier, threshold=0.05, grace=0.1)
    watchdog.start()

    await asyncio.sleep(0.07)
    assert watchdog.signal_lost

    watchdog.reset(LocationSample(latitude=-23.5, longitude=-46.6))
    assert not watchdog.signal_lost

    await asyncio.sleep(0.09)
    assert sink.incidents == []

    await watchdog.stop()


@pytest.mark.asyncio
async def test_regular_updates_keep_it_quiet():
    sink, notifier = FakeSink(), FakeNotifier()
    watchdog = _watchdog(sink, notifier, threshold=0.08)
    watchdog.start()

    for _ in range(5):
        await asyncio.sleep(0.03)
        watchdog.reset()

    assert not watchdog.signal_lost
    assert notifier.sent == []
    await watchdog.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_final():
    sink, notifier = FakeSink(), FakeNotifier()
    watchdog = _watchdog(sink, notifier)
    watchdog.start()

    await watchdog.stop()
    await watchdog.stop()
    watchdog.reset()

    assert not watchdog.armed
    await asyncio.sleep(0.15)
    assert sink.incidents == []
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_update_during_incident_write_does_not_cancel_it():
    sink, notifier = SlowSink(), FakeNotifier()
    watchdog = _watchdog(sink, notifier, threshold=0.02, grace=0.02)
    watchdog.start()

    await asyncio.wait_for(sink.entered.wait(), timeout=1)
    watchdog.reset(LocationSample(latitude=-23.5, longitude=-46.6))
    assert not watchdog.signal_lost

    sink.release.set()
    await watchdog.stop()

    assert len(sink.incidents) == 1
    assert not watchdog.escalated
