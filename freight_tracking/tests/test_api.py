"""
HTTP API tests: auth guards, error envelope, and the driver/operator flows.
"""

import pytest

from freight_tracking.app.core.exceptions import PersistenceError
from freight_tracking.app.models.enums import UserRole
from freight_tracking.app.models.incident import Incident, IncidentType, IncidentSeverity
from freight_tracking.app.services.position_source import AcquisitionFailure


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requires_authentication(client, shipment):
    response = await client.post(f"/v1/driver/shipments/{shipment.id}/progress", json={"status": "LOADING"})
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_operator_cannot_advance(client, shipment, operator_headers):
    response = await client.post(
        f"/v1/driver/shipments/{shipment.id}/progress",
        json={"status": "LOADING"},
        headers=operator_headers
    )
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"


@pytest.mark.asyncio
async def test_inactive_user_rejected(client, user_factory, headers_for):
    ghost = await user_factory("ghost", UserRole.DRIVER, is_active=False)
    response = await client.get("/v1/driver/location", headers=headers_for(ghost))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_advance_flow(client, shipment, driver_headers, mock_redis):
    url = f"/v1/driver/shipments/{shipment.id}/progress"

    response = await client.post(url, json={"status": "LOADING", "lat": -22.9, "lng": -47.06}, headers=driver_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["previous_status"] == "ACCEPTED"
    assert body["new_status"] == "LOADING"
    assert body["new_status_label"] == "Heading to pickup"

    response = await client.post(url, json={"status": "LOADING"}, headers=driver_headers)
    assert response.status_code == 200
    assert response.json()["idempotent"] is True

    response = await client.get(url, headers=driver_headers)
    assert response.status_code == 200
    state = response.json()
    assert state["current_status"] == "LOADING"
    assert state["next_status"] == "LOADED"
    assert state["can_advance"] is True
    assert state["progress"]["last_lat"] == -22.9

    response = await client.post(f"{url}/next", headers=driver_headers)
    assert response.status_code == 200
    assert response.json()["new_status"] == "LOADED"

    assert len(mock_redis.published) == 2


@pytest.mark.asyncio
async def test_rejected_advance_error_envelope(client, shipment, driver_headers):
    response = await client.post(
        f"/v1/driver/shipments/{shipment.id}/progress",
        json={"status": "IN_TRANSIT"},
        headers=driver_headers
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "ERR_TRIP_001"
    assert body["details"]["reason"] == "skip"
    assert body["details"]["expected_status"] == "LOADING"
    assert "Heading to pickup" in body["message"]


@pytest.mark.asyncio
async def test_unassigned_driver_gets_403(client, shipment, user_factory, headers_for):
    stranger = await user_factory("stranger")
    response = await client.post(
        f"/v1/driver/shipments/{shipment.id}/progress",
        json={"status": "LOADING"},
        headers=headers_for(stranger)
    )
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_002"


@pytest.mark.asyncio
async def test_unknown_shipment_gets_404(client, driver, driver_headers):
    response = await client.get("/v1/driver/shipments/9999/progress", headers=driver_headers)
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_location_report_and_throttle(client, shipment, driver_headers):
    payload = {"latitude": -23.55, "longitude": -46.63, "accuracy_meters": 10, "shipment_id": shipment.id}

    first = await client.post("/v1/driver/location", json=payload, headers=driver_headers)
    second = await client.post("/v1/driver/location", json=payload, headers=driver_headers)

    assert first.json() == {"accepted": True, "reason": None}
    assert second.json() == {"accepted": False, "reason": "throttled"}

    response = await client.get("/v1/driver/location", headers=driver_headers)
    assert response.status_code == 200
    assert response.json()["latitude"] == -23.55


@pytest.mark.asyncio
async def test_location_validation(client, driver_headers):
    response = await client.post("/v1/driver/location", json={"latitude": 123, "longitude": 0}, headers=driver_headers)
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_location_write_failure_is_503(client, driver_headers, tracking_runtime, mocker):
    mocker.patch.object(
        tracking_runtime.store, "upsert_current_location",
        side_effect=PersistenceError("db down", operation="current_location")
    )

    response = await client.post("/v1/driver/location", json={"latitude": 1, "longitude": 1}, headers=driver_headers)
    assert response.status_code == 503
    assert response.json()["error_code"] == "ERR_STORE_001"


@pytest.mark.asyncio
async def test_gps_fix_is_buffered(client, driver, driver_headers, tracking_runtime):
    response = await client.post("/v1/driver/gps-fixes", json={"error_code": 1}, headers=driver_headers)
    assert response.status_code == 202

    with pytest.raises(AcquisitionFailure) as exc_info:
        await tracking_runtime.fix_buffer.acquire(driver.id)
    assert exc_info.value.code == AcquisitionFailure.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_monitoring_session_lifecycle(client, shipment, driver, operator_headers):
    options = {"poll_interval_seconds": 3600, "signal_loss_threshold_seconds": 3600}
    response = await client.post(
        "/v1/monitoring/sessions",
        json={"shipment_id": shipment.id, "driver_id": driver.id, "options": options},
        headers=operator_headers
    )
    assert response.status_code == 201
    session = response.json()
    assert session["state"] == "ACTIVE"

    response = await client.get("/v1/monitoring/sessions", headers=operator_headers)
    assert [s["handle"] for s in response.json()] == [session["handle"]]

    response = await client.delete(f"/v1/monitoring/sessions/{session['handle']}", headers=operator_headers)
    assert response.json() == {"handle": session["handle"], "stopped": True}

    response = await client.delete(f"/v1/monitoring/sessions/{session['handle']}", headers=operator_headers)
    assert response.json()["stopped"] is False


@pytest.mark.asyncio
async def test_monitoring_requires_assignment(client, shipment, user_factory, operator_headers):
    stranger = await user_factory("stranger")
    response = await client.post(
        "/v1/monitoring/sessions",
        json={"shipment_id": shipment.id, "driver_id": stranger.id},
        headers=operator_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_driver_cannot_manage_sessions(client, driver_headers):
    response = await client.get("/v1/monitoring/sessions", headers=driver_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_incidents(client, db_session, shipment, driver, operator_headers):
    db_session.add_all([
        Incident(
            shipment_id=shipment.id, driver_id=driver.id,
            incident_type=IncidentType.SIGNAL_LOST, severity=IncidentSeverity.HIGH,
            description="Signal lost"
        ),
        Incident(
            shipment_id=shipment.id, driver_id=driver.id,
            incident_type=IncidentType.GPS_ACQUISITION_FAILURE, severity=IncidentSeverity.CRITICAL,
            description="GPS off", evidence_data={"consecutive_failures": 3}
        ),
    ])
    await db_session.commit()

    response = await client.get("/v1/operator/incidents", headers=operator_headers)
    assert response.status_code == 200
    assert len(response.json()) == 2

    response = await client.get(
        "/v1/operator/incidents", params={"severity": "CRITICAL"}, headers=operator_headers
    )
    body = response.json()
    assert len(body) == 1
    assert body[0]["incident_type"] == "GPS_ACQUISITION_FAILURE"
    assert body[0]["status"] == "OPEN"
