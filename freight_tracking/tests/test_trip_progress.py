"""
Trip progress service tests.

Covers the persisted stage walk, idempotence, rejection reporting, and the
best-effort side effects after a committed advance.
"""

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from freight_tracking.app.core.exceptions import (
    ValidationError, PersistenceError, NotAssignedError, ResourceNotFoundError
)
from freight_tracking.app.domain.trip_progress.trip_progress_service import (
    TripProgressService, add_status_listener, remove_status_listener
)
from freight_tracking.app.models.notification import Notification
from freight_tracking.app.models.shipment import Shipment, ShipmentAssignment
from freight_tracking.app.models.trip_progress import TripProgress, ShipmentStatusHistory
from freight_tracking.app.schemas.trip_progress import ProgressEvidence


FULL_WALK = [
    "ACCEPTED", "LOADING", "LOADED", "IN_TRANSIT",
    "DELIVERED_PENDING_CONFIRMATION", "DELIVERED", "COMPLETED",
]


async def _count(session_factory, model, *criteria):
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(model).where(*criteria))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_end_to_end_stage_walk(db_session, session_factory, shipment, driver, mock_redis):
    for stage in FULL_WALK:
        result = await TripProgressService.advance(
            db_session, shipment.id, driver.id, stage, redis=mock_redis
        )
        assert result.success
        assert result.new_status == stage

    with pytest.raises(ValidationError) as exc_info:
        await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")
    assert exc_info.value.reason == "regression"
    assert '"Completed"' in exc_info.value.message

    async with session_factory() as db:
        progress = (await db.execute(
            select(TripProgress).where(TripProgress.shipment_id == shipment.id)
        )).scalar_one()
        stored = await db.get(Shipment, shipment.id)

    assert progress.current_status == "COMPLETED"
    stamps = [
        getattr(progress, field)
        for field in ("accepted_at", "loading_at", "loaded_at", "in_transit_at",
                      "delivered_pending_confirmation_at", "delivered_at", "completed_at")
    ]
    assert all(stamp is not None for stamp in stamps)
    assert stamps == sorted(stamps)
    assert stored.status == "COMPLETED"

    # ACCEPTED was already current (from the assignment): no history row for it
    assert await _count(session_factory, ShipmentStatusHistory, ShipmentStatusHistory.shipment_id == shipment.id) == 6
    assert len(mock_redis.published) == 6


@pytest.mark.asyncio
async def test_idempotent_advance_writes_nothing(db_session, session_factory, shipment, driver, shipper, mock_redis):
    first = await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING", redis=mock_redis)
    async with session_factory() as db:
        progress = await db.get(TripProgress, first.progress_id)
        loading_at = progress.loading_at

    second = await TripProgressService.advance(db_session, shipment.id, driver.id, "loading", redis=mock_redis)

    assert not first.idempotent
    assert second.success and second.idempotent
    assert second.new_status == second.previous_status == "LOADING"

    async with session_factory() as db:
        progress = await db.get(TripProgress, first.progress_id)
        assert progress.loading_at == loading_at

    assert await _count(session_factory, ShipmentStatusHistory, ShipmentStatusHistory.shipment_id == shipment.id) == 1
    assert await _count(session_factory, Notification, Notification.user_id == shipper.id) == 1
    assert len(mock_redis.published) == 1


@pytest.mark.asyncio
async def test_skip_is_rejected_with_expected_stage(db_session, session_factory, shipment, driver):
    with pytest.raises(ValidationError) as exc_info:
        await TripProgressService.advance(db_session, shipment.id, driver.id, "IN_TRANSIT")

    error = exc_info.value
    assert error.status_code == 400
    assert error.details["reason"] == "skip"
    assert error.details["current_status"] == "ACCEPTED"
    assert error.details["expected_status"] == "LOADING"
    assert '"Heading to pickup"' in error.message

    assert await _count(session_factory, TripProgress) == 0


@pytest.mark.asyncio
async def test_first_advance_from_assignment_stamps_accepted(db_session, session_factory, shipment, driver):
    result = await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")

    async with session_factory() as db:
        progress = await db.get(TripProgress, result.progress_id)

    assert progress.accepted_at is not None
    assert progress.loading_at is not None
    assert progress.accepted_at <= progress.loading_at
    assert progress.loaded_at is None


@pytest.mark.asyncio
async def test_regression_from_in_transit_is_rejected(db_session, session_factory, shipment, driver):
    for stage in ("LOADING", "LOADED", "IN_TRANSIT"):
        await TripProgressService.advance(db_session, shipment.id, driver.id, stage)

    with pytest.raises(ValidationError) as exc_info:
        await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")

    error = exc_info.value
    assert error.status_code == 400
    assert error.details["reason"] == "regression"
    assert error.details["current_status"] == "IN_TRANSIT"
    assert '"In transit"' in error.message
    assert '"Heading to pickup"' in error.message

    async with session_factory() as db:
        progress = (await db.execute(select(TripProgress))).scalar_one()
    assert progress.current_status == "IN_TRANSIT"
    assert await _count(session_factory, ShipmentStatusHistory) == 3


@pytest.mark.asyncio
async def test_concurrent_first_advance_is_idempotent(db_session, session_factory, shipment, driver, monkeypatch):
    # Another request already created the row and moved it to LOADING
    async with session_factory() as db:
        assignment = (await db.execute(
            select(ShipmentAssignment).where(ShipmentAssignment.shipment_id == shipment.id)
        )).scalar_one()
        db.add(TripProgress(
            shipment_id=shipment.id, driver_id=driver.id, assignment_id=assignment.id,
            current_status="LOADING",
        ))
        await db.commit()

    # ... but this request loaded its state before that commit
    original_load = TripProgressService._load
    loads = []

    async def load_before_commit(db, shipment_id, driver_id):
        loaded_shipment, assignment, progress = await original_load(db, shipment_id, driver_id)
        loads.append(progress)
        if len(loads) == 1:
            return loaded_shipment, assignment, None
        return loaded_shipment, assignment, progress

    monkeypatch.setattr(TripProgressService, "_load", staticmethod(load_before_commit))

    result = await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")

    assert result.success and result.idempotent
    assert len(loads) == 2
    assert await _count(session_factory, TripProgress) == 1


@pytest.mark.asyncio
async def test_unrecognized_target_is_rejected(db_session, shipment, driver):
    with pytest.raises(ValidationError) as exc_info:
        await TripProgressService.advance(db_session, shipment.id, driver.id, "FLYING")
    assert exc_info.value.reason == "unrecognized"


@pytest.mark.asyncio
async def test_evidence_is_persisted(db_session, session_factory, shipment, driver):
    evidence = ProgressEvidence(lat=-22.9, lng=-47.06, notes="Dock 4")
    result = await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING", evidence)

    async with session_factory() as db:
        progress = await db.get(TripProgress, result.progress_id)
        history = (await db.execute(select(ShipmentStatusHistory))).scalar_one()

    assert (progress.last_lat, progress.last_lng, progress.driver_notes) == (-22.9, -47.06, "Dock 4")
    assert history.changed_by == driver.id
    assert history.location_lat == -22.9


@pytest.mark.asyncio
async def test_unassigned_driver_is_refused(db_session, shipment, user_factory):
    stranger = await user_factory("stranger")
    with pytest.raises(NotAssignedError):
        await TripProgressService.advance(db_session, shipment.id, stranger.id, "LOADING")


@pytest.mark.asyncio
async def test_cancelled_assignment_is_refused(db_session, shipment, driver):
    assignment = (await db_session.execute(
        select(ShipmentAssignment).where(ShipmentAssignment.shipment_id == shipment.id)
    )).scalar_one()
    assignment.status = "CANCELLED"
    await db_session.commit()

    with pytest.raises(NotAssignedError):
        await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")


@pytest.mark.asyncio
async def test_unknown_shipment(db_session, driver):
    with pytest.raises(ResourceNotFoundError):
        await TripProgressService.advance(db_session, 9999, driver.id, "LOADING")


@pytest.mark.asyncio
async def test_primary_write_failure_raises_persistence_error(db_session, session_factory, shipment, driver, mocker):
    mocker.patch.object(db_session, "commit", side_effect=SQLAlchemyError("disk full"))

    with pytest.raises(PersistenceError) as exc_info:
        await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")

    assert exc_info.value.status_code == 503
    assert exc_info.value.details["operation"] == "trip_progress"
    assert await _count(session_factory, TripProgress) == 0


@pytest.mark.asyncio
async def test_redis_outage_does_not_fail_advance(db_session, shipment, driver, mock_redis):
    await mock_redis.aclose()

    result = await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING", redis=mock_redis)
    assert result.success
    assert mock_redis.published == []


@pytest.mark.asyncio
async def test_progress_event_payload(db_session, shipment, driver, mock_redis):
    mock_redis.store[f"shipment:{shipment.id}:details"] = "{}"

    await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING", redis=mock_redis)

    channel, message = mock_redis.published[0]
    assert channel == f"trip-progress:{shipment.id}"
    assert json.loads(message)["new_status"] == "LOADING"
    assert f"shipment:{shipment.id}:details" not in mock_redis.store


@pytest.mark.asyncio
async def test_status_listeners_called_after_commit(db_session, shipment, driver):
    listener = AsyncMock()
    failing = AsyncMock(side_effect=RuntimeError("listener down"))
    add_status_listener(failing)
    add_status_listener(listener)
    try:
        await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")
        await TripProgressService.advance(db_session, shipment.id, driver.id, "LOADING")
    finally:
        remove_status_listener(failing)
        remove_status_listener(listener)

    listener.assert_awaited_once_with(shipment.id, "ACCEPTED", "LOADING")


@pytest.mark.asyncio
async def test_advance_to_next_and_get_progress(db_session, shipment, driver):
    current, progress = await TripProgressService.get_progress(db_session, shipment.id, driver.id)
    assert current == "ACCEPTED"
    assert progress is None

    result = await TripProgressService.advance_to_next(db_session, shipment.id, driver.id)
    assert result.new_status == "LOADING"

    current, progress = await TripProgressService.get_progress(db_session, shipment.id, driver.id)
    assert current == "LOADING"
    assert progress.loading_at is not None


@pytest.mark.asyncio
async def test_advance_to_next_at_final_stage(db_session, shipment, driver):
    for stage in FULL_WALK[1:]:
        await TripProgressService.advance(db_session, shipment.id, driver.id, stage)

    with pytest.raises(ValidationError):
        await TripProgressService.advance_to_next(db_session, shipment.id, driver.id)
