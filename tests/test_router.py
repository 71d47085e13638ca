"""API tests through the FastAPI app"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from crm_calendar.database import get_db
from crm_calendar.main import app

from .conftest import AGENT, MONDAY, WORKSPACE, utc

HEADERS = {"X-Workspace-Id": WORKSPACE, "X-User-Id": "user-1"}
ADMIN_HEADERS = {**HEADERS, "X-User-Id": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def iso(value):
    return value.isoformat()


def appointment_body(start, end, **fields):
    body = {
        "title": "Property viewing",
        "type": "viewing",
        "startTime": iso(start),
        "endTime": iso(end),
        "assignedToId": AGENT,
    }
    body.update(fields)
    return body


def put_weekday_hours(client):
    entries = [
        {"isRecurring": True, "dayOfWeek": day, "startTime": "09:00", "endTime": "17:00"}
        for day in range(1, 6)
    ]
    response = client.put(f"/calendar/availability/{AGENT}", json={"entries": entries}, headers=HEADERS)
    assert response.status_code == 204


def test_missing_identity_is_rejected(client):
    response = client.get("/calendar/appointments")

    assert response.status_code == 401


def test_create_then_fetch(client):
    created = client.post(
        "/calendar/appointments",
        json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 11), priority="high"),
        headers=HEADERS,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["version"] == 1
    assert body["status"] == "scheduled"
    assert len(body["reminders"]) == 2

    fetched = client.get(f"/calendar/appointments/{body['id']}", headers=HEADERS)
    assert fetched.status_code == 200
    assert fetched.json() == body


def test_conflict_response_carries_suggestions(client):
    put_weekday_hours(client)
    first = client.post(
        "/calendar/appointments", json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 11)), headers=HEADERS
    ).json()

    response = client.post(
        "/calendar/appointments",
        json=appointment_body(utc(MONDAY, 10, 30), utc(MONDAY, 11, 30)),
        headers=HEADERS,
    )

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "conflict"
    assert [c["id"] for c in error["details"]["conflicts"]] == [first["id"]]
    assert error["details"]["suggestions"]


def test_invalid_body_maps_to_validation_error(client):
    response = client.post(
        "/calendar/appointments",
        json=appointment_body(utc(MONDAY, 11), utc(MONDAY, 10)),
        headers=HEADERS,
    )

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "validation_error"
    assert error["details"]["errors"]


def test_missing_appointment_is_404(client):
    response = client.get("/calendar/appointments/nope", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_patch_with_stale_version(client):
    created = client.post(
        "/calendar/appointments", json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 11)), headers=HEADERS
    ).json()
    url = f"/calendar/appointments/{created['id']}"

    updated = client.patch(url, json={"version": 1, "status": "confirmed"}, headers=HEADERS)
    assert updated.status_code == 200
    assert updated.json()["version"] == 2

    stale = client.patch(url, json={"version": 1, "title": "Overwrite"}, headers=HEADERS)
    assert stale.status_code == 409
    assert stale.json()["error"]["code"] == "concurrency_error"

    invalid = client.patch(url, json={"version": 2, "status": "scheduled"}, headers=HEADERS)
    assert invalid.status_code == 409
    assert invalid.json()["error"]["code"] == "invalid_transition"


def test_delete_soft_and_hard(client):
    created = client.post(
        "/calendar/appointments", json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 11)), headers=HEADERS
    ).json()
    url = f"/calendar/appointments/{created['id']}"

    assert client.delete(url, headers=HEADERS).status_code == 204
    assert client.get(url, headers=HEADERS).json()["status"] == "cancelled"

    forbidden = client.delete(url, params={"hard": "true"}, headers=HEADERS)
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "forbidden"

    assert client.delete(url, params={"hard": "true"}, headers=ADMIN_HEADERS).status_code == 204
    assert client.get(url, headers=HEADERS).status_code == 404


def test_list_with_filters(client):
    for hour, kind in ((9, "call"), (11, "viewing"), (13, "call")):
        client.post(
            "/calendar/appointments",
            json=appointment_body(utc(MONDAY, hour), utc(MONDAY, hour + 1), type=kind),
            headers=HEADERS,
        )

    response = client.get(
        "/calendar/appointments", params={"type": "call", "limit": 1}, headers=HEADERS
    )

    body = response.json()
    assert body["count"] == 2
    assert len(body["items"]) == 1
    assert body["items"][0]["type"] == "call"


def test_bulk_update(client):
    created = client.post(
        "/calendar/appointments", json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 11)), headers=HEADERS
    ).json()

    response = client.post(
        "/calendar/appointments/bulk-update",
        json={
            "items": [
                {"id": created["id"], "version": 1, "status": "confirmed"},
                {"id": "ghost", "version": 1, "status": "confirmed"},
            ]
        },
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["succeeded"] == [created["id"]]
    assert body["failed"] == [{"id": "ghost", "reason": "Appointment ghost not found", "code": "not_found"}]


def test_available_slots_and_availability(client):
    put_weekday_hours(client)
    params = {
        "agentId": AGENT,
        "startDate": iso(utc(MONDAY, 0)),
        "endDate": iso(utc(MONDAY, 0) + timedelta(days=1)),
        "duration": 60,
        "bufferMinutes": 15,
    }

    slots = client.get("/calendar/available-slots", params=params, headers=HEADERS).json()
    assert slots[0]["startTime"].startswith("2030-01-07T09:00:00")
    assert len(slots) == 28

    resolved = client.get(
        f"/calendar/availability/{AGENT}",
        params={"startDate": params["startDate"], "endDate": params["endDate"]},
        headers=HEADERS,
    ).json()
    assert [r["state"] for r in resolved] == ["unavailable", "available", "unavailable"]

    entries = client.get(f"/calendar/availability/{AGENT}/entries", headers=HEADERS).json()
    assert len(entries) == 5


def test_bad_slot_duration(client):
    response = client.get(
        "/calendar/available-slots",
        params={
            "agentId": AGENT,
            "startDate": iso(utc(MONDAY, 0)),
            "endDate": iso(utc(MONDAY, 12)),
            "duration": 0,
        },
        headers=HEADERS,
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


def test_conflict_check_endpoint(client):
    client.post(
        "/calendar/appointments", json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 11)), headers=HEADERS
    )

    response = client.post(
        "/calendar/conflicts",
        json={"agentId": AGENT, "startTime": iso(utc(MONDAY, 11)), "endTime": iso(utc(MONDAY, 12))},
        headers=HEADERS,
    )

    assert response.json() == {"hasConflicts": False, "conflicts": [], "suggestions": []}


def test_smart_schedule_without_availability(client):
    response = client.post(
        "/calendar/smart-schedule",
        json={"contactId": "contact-1", "type": "call", "duration": 30, "assignedToId": AGENT},
        headers=HEADERS,
    )

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "no_availability"


def test_smart_schedule_books_a_slot(client):
    put_weekday_hours(client)

    response = client.post(
        "/calendar/smart-schedule",
        json={"contactId": "contact-1", "type": "call", "duration": 30, "assignedToId": AGENT},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["appointment"]["contactId"] == "contact-1"
    assert body["recommendation"]["reason"]


def test_smart_schedule_requires_contact(client):
    response = client.post(
        "/calendar/smart-schedule", json={"type": "call", "assignedToId": AGENT}, headers=HEADERS
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_request"


def test_hold_lifecycle(client):
    body = {"agentId": AGENT, "startTime": iso(utc(MONDAY, 10)), "endTime": iso(utc(MONDAY, 11))}

    hold = client.post("/calendar/holds", json=body, headers=ADMIN_HEADERS)
    assert hold.status_code == 201

    blocked = client.post(
        "/calendar/appointments", json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 11)), headers=HEADERS
    )
    assert blocked.status_code == 409

    released = client.delete(f"/calendar/holds/{hold.json()['id']}", headers=ADMIN_HEADERS)
    assert released.status_code == 204


def test_analytics_and_agenda(client):
    client.post(
        "/calendar/appointments",
        json=appointment_body(utc(MONDAY, 10), utc(MONDAY, 12), priority="urgent"),
        headers=HEADERS,
    )

    analytics = client.get(
        "/calendar/analytics",
        params={"startDate": iso(utc(MONDAY, 0)), "endDate": iso(utc(MONDAY, 0) + timedelta(days=7))},
        headers=HEADERS,
    ).json()
    assert analytics["summary"]["totalAppointments"] == 1
    assert analytics["trends"]["peakDays"] == [{"day": "Monday", "count": 1}]

    agenda = client.get(
        f"/calendar/agenda/{AGENT}", params={"date": MONDAY.isoformat()}, headers=HEADERS
    ).json()
    assert agenda["insights"]["busyPercentage"] == 25
    assert agenda["appointments"][0]["priority"] == "urgent"


def test_bad_group_by(client):
    response = client.get(
        "/calendar/analytics",
        params={"startDate": iso(utc(MONDAY, 0)), "endDate": iso(utc(MONDAY, 12)), "groupBy": "colour"},
        headers=HEADERS,
    )

    assert response.status_code == 422


def test_import_requires_calendar_token(client):
    response = client.post(
        f"/calendar/availability/{AGENT}/import",
        params={"startDate": iso(utc(MONDAY, 0)), "endDate": iso(utc(MONDAY, 12))},
        headers=HEADERS,
    )

    assert response.status_code == 422
    assert response.json()["error"]["details"]["field"] == "X-Calendar-Token"


def test_reminder_dispatch_endpoint(client):
    response = client.post("/calendar/reminders/dispatch", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"sent": 0, "total": 0}


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
