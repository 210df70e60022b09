"""Tests for API endpoints."""

from datetime import datetime, timedelta

import pytest
from conftest import CLINIC, MONDAY, at
from fastapi.testclient import TestClient

from clinicflow import __version__
from clinicflow.main import app
from clinicflow.services.demo_data import DEMO_CLINIC_ID
from clinicflow.services.engine import get_engine

HEADERS = {"X-Clinic-Id": CLINIC}


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def book(client, patient_id="p1", start=None, **fields):
    payload = {
        "patient_id": patient_id,
        "provider_id": "dr-a",
        "appointment_type_id": "exam",
        "start": (start or at(MONDAY, 10)).isoformat(),
        **fields,
    }
    return client.post("/appointments", json=payload, headers=HEADERS)


def transition(client, appointment_id, status, **fields):
    return client.post(
        f"/appointments/{appointment_id}/transition", json={"status": status, **fields}, headers=HEADERS
    )


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self, client):
        """Test that health check returns 200 status."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_response_structure(self, client):
        """Test that health check returns expected JSON structure."""
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert "timestamp" in data

    def test_health_check_content_type(self, client):
        response = client.get("/health")
        assert response.headers["content-type"] == "application/json"

    def test_openapi_lists_routes(self, client):
        paths = client.get("/openapi.json").json()["paths"]
        for path in ("/appointments", "/calendar", "/waitlist", "/visits", "/queue"):
            assert path in paths


class TestClinicScoping:
    """Tests for the X-Clinic-Id header."""

    def test_missing_header(self, client):
        response = client.get("/queue")
        assert response.status_code == 422

    def test_unknown_clinic(self, client):
        response = client.get("/queue", headers={"X-Clinic-Id": "nowhere"})
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"

    def test_other_clinic_cannot_see_appointment(self, client):
        appointment_id = book(client).json()["appointment_ids"][0]
        response = client.get(f"/appointments/{appointment_id}", headers={"X-Clinic-Id": "c2"})
        assert response.status_code == 404


class TestAppointmentEndpoints:
    """Tests for booking and lifecycle endpoints."""

    def test_book_returns_201(self, client):
        response = book(client)
        assert response.status_code == 201
        data = response.json()
        assert len(data["appointment_ids"]) == 1
        assert data["series_id"] is None

        appointment = client.get(f"/appointments/{data['appointment_ids'][0]}", headers=HEADERS).json()
        assert appointment["status"] == "scheduled"
        assert datetime.fromisoformat(appointment["end"]) == at(MONDAY, 10, 30)
        assert appointment["history"][0]["to_status"] == "scheduled"

    def test_conflict_returns_409_with_ids(self, client):
        first = book(client, patient_id="p1").json()["appointment_ids"][0]
        response = book(client, patient_id="p2", start=at(MONDAY, 10, 15))
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "PROVIDER_CONFLICT"
        assert detail["conflicting_appointment_ids"] == [first]

    def test_validation_errors_return_422(self, client):
        response = book(client, provider_id="nobody")
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

        naive = book(client, start=datetime(2030, 1, 7, 10))
        assert naive.status_code == 422

    def test_outside_hours_returns_409(self, client):
        response = book(client, start=at(MONDAY, 12, 15))
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "SLOT_UNAVAILABLE"

    def test_recurring_booking(self, client):
        response = book(client, recurrence={"frequency": "weekly", "count": 3})
        assert response.status_code == 201
        data = response.json()
        assert [i["status"] for i in data["instances"]] == ["booked", "booked", "booked"]
        assert len(data["appointment_ids"]) == 3

        series = client.get(f"/series/{data['series_id']}", headers=HEADERS).json()
        assert series["generated"] == 3
        assert series["exhausted"] is True
        assert series["instance_ids"] == data["appointment_ids"]

    def test_series_template_and_extend(self, client):
        data = book(client, recurrence={"frequency": "weekly", "count": 4}, horizon=2).json()
        series_id = data["series_id"]

        patched = client.patch(f"/series/{series_id}/template", json={"duration_minutes": 45}, headers=HEADERS)
        assert patched.status_code == 200
        assert patched.json()["duration_minutes"] == 45

        extended = client.post(f"/series/{series_id}/extend", json={}, headers=HEADERS).json()
        assert [i["index"] for i in extended["instances"]] == [2, 3]
        assert extended["exhausted"] is True

    def test_lifecycle(self, client, clock):
        appointment_id = book(client, appointment_type_id="cleaning").json()["appointment_ids"][0]
        assert transition(client, appointment_id, "confirmed").json()["status"] == "confirmed"

        clock.now = at(MONDAY, 9, 55)
        checked_in = transition(client, appointment_id, "checked_in")
        assert checked_in.status_code == 200
        visit_id = checked_in.json()["visit_id"]
        assert visit_id

        appointment = client.get(f"/appointments/{appointment_id}", headers=HEADERS).json()
        assert appointment["resource_ids"] == ["chair-1"]
        visit = client.get(f"/visits/{visit_id}", headers=HEADERS).json()
        assert visit["appointment_id"] == appointment_id

    def test_illegal_transition_returns_409(self, client):
        appointment_id = book(client).json()["appointment_ids"][0]
        response = transition(client, appointment_id, "completed")
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "ILLEGAL_TRANSITION"

    def test_cancel_requires_reason(self, client):
        appointment_id = book(client).json()["appointment_ids"][0]
        assert transition(client, appointment_id, "cancelled").status_code == 422
        response = transition(client, appointment_id, "cancelled", reason="Feeling better")
        assert response.json()["status"] == "cancelled"

    def test_explicit_allocation(self, client):
        appointment_id = book(client, appointment_type_id="xray").json()["appointment_ids"][0]
        response = client.post(f"/appointments/{appointment_id}/allocate", headers=HEADERS)
        assert response.json()["resource_ids"] == ["xray-chair"]

    def test_unknown_appointment(self, client):
        assert client.get("/appointments/missing", headers=HEADERS).status_code == 404

    def test_reschedule(self, client):
        appointment_id = book(client).json()["appointment_ids"][0]
        response = client.post(
            f"/appointments/{appointment_id}/reschedule", json={"start": at(MONDAY, 14).isoformat()}, headers=HEADERS
        )
        assert response.status_code == 200
        assert datetime.fromisoformat(response.json()["start"]) == at(MONDAY, 14)

        assert book(client, patient_id="p2", start=at(MONDAY, 14, 15)).status_code == 409
        assert book(client, patient_id="p3").status_code == 201

    def test_reschedule_into_break_returns_409(self, client):
        appointment_id = book(client).json()["appointment_ids"][0]
        response = client.post(
            f"/appointments/{appointment_id}/reschedule", json={"start": at(MONDAY, 12).isoformat()}, headers=HEADERS
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "SLOT_UNAVAILABLE"


class TestCalendarEndpoint:
    """Tests for the calendar view."""

    def test_calendar_with_open_slots(self, client):
        book(client)
        params = {"from": MONDAY.isoformat(), "to": MONDAY.isoformat(), "provider_id": "dr-a"}
        data = client.get("/calendar", params={**params, "appointment_type_id": "exam"}, headers=HEADERS).json()
        assert len(data["appointments"]) == 1
        assert len(data["open_slots"]) == 13

        without_type = client.get("/calendar", params=params, headers=HEADERS).json()
        assert without_type["open_slots"] == []

    def test_calendar_by_resource(self, client):
        book(client, appointment_type_id="consult")
        params = {"from": MONDAY.isoformat(), "to": MONDAY.isoformat(), "resource_id": "room-1"}
        data = client.get("/calendar", params=params, headers=HEADERS).json()
        assert len(data["appointments"]) == 1

    def test_range_too_long(self, client):
        params = {"from": MONDAY.isoformat(), "to": (MONDAY + timedelta(days=120)).isoformat(), "provider_id": "dr-a"}
        assert client.get("/calendar", params=params, headers=HEADERS).status_code == 422


class TestWaitlistEndpoints:
    """Tests for waitlist entries and offers."""

    def test_add_and_list(self, client):
        response = client.post(
            "/waitlist", json={"patient_id": "p1", "appointment_type_id": "exam", "urgent": True}, headers=HEADERS
        )
        assert response.status_code == 201
        entry = response.json()
        assert entry["status"] == "waiting"

        listed = client.get("/waitlist", params={"status": "waiting"}, headers=HEADERS).json()
        assert [e["id"] for e in listed] == [entry["id"]]

    def test_cancellation_offer_accept_twice(self, client):
        """Test that the first accept books the slot and the second answers 409 STALE_OFFER."""
        entry_id = client.post(
            "/waitlist", json={"patient_id": "p1", "appointment_type_id": "exam"}, headers=HEADERS
        ).json()["id"]
        appointment_id = book(client, patient_id="p0").json()["appointment_ids"][0]
        transition(client, appointment_id, "cancelled", reason="Rescheduled")

        entry = client.get(f"/waitlist/{entry_id}", headers=HEADERS).json()
        assert entry["status"] == "offered"
        offer_id = entry["offer"]["id"]

        url = f"/waitlist/{entry_id}/offers/{offer_id}/accept"
        accepted = client.post(url, headers=HEADERS)
        assert accepted.status_code == 200
        assert accepted.json()["patient_id"] == "p1"
        assert accepted.json()["source"] == "waitlist"

        again = client.post(url, headers=HEADERS)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "STALE_OFFER"

    def test_manual_opening_and_decline(self, client):
        entry_id = client.post(
            "/waitlist", json={"patient_id": "p1", "appointment_type_id": "exam"}, headers=HEADERS
        ).json()["id"]
        opening = client.post(
            "/waitlist/openings",
            json={
                "appointment_type_id": "exam",
                "provider_id": "dr-a",
                "start": at(MONDAY, 11).isoformat(),
                "end": at(MONDAY, 11, 30).isoformat(),
            },
            headers=HEADERS,
        )
        assert opening.status_code == 201
        assert opening.json()["candidate_ids"] == [entry_id]

        offer_id = opening.json()["offer"]["id"]
        declined = client.post(f"/waitlist/{entry_id}/offers/{offer_id}/decline", headers=HEADERS).json()
        assert declined["status"] == "waiting"
        assert declined["offer"] is None

    def test_withdraw(self, client):
        entry_id = client.post(
            "/waitlist", json={"patient_id": "p1", "appointment_type_id": "exam"}, headers=HEADERS
        ).json()["id"]
        assert client.delete(f"/waitlist/{entry_id}", headers=HEADERS).json()["status"] == "withdrawn"
        assert client.delete(f"/waitlist/{entry_id}", headers=HEADERS).status_code == 409


class TestPatientFlowEndpoints:
    """Tests for walk-ins, the queue and alerts."""

    def test_walk_in_and_queue(self, client, clock):
        clock.now = at(MONDAY, 9)
        first = client.post("/visits", json={"patient_id": "p1"}, headers=HEADERS)
        assert first.status_code == 201
        assert first.json()["ticket_number"] == 1
        second = client.post("/visits", json={"patient_id": "p2"}, headers=HEADERS).json()
        assert second["ticket_number"] == 2

        for visit_id in (first.json()["id"], second["id"]):
            client.post(f"/visits/{visit_id}/transition", json={"state": "waiting"}, headers=HEADERS)
        client.post(f"/visits/{second['id']}/priority", json={"emergency": True}, headers=HEADERS)

        queue = client.get("/queue", headers=HEADERS).json()
        assert [v["id"] for v in queue["visits"]] == [second["id"], first.json()["id"]]
        assert queue["summary"]["waiting"] == 2

    def test_wait_alerts(self, client, clock):
        clock.now = at(MONDAY, 9)
        visit_id = client.post("/visits", json={"patient_id": "p1"}, headers=HEADERS).json()["id"]
        client.post(f"/visits/{visit_id}/transition", json={"state": "waiting"}, headers=HEADERS)

        clock.advance(minutes=20)
        alerts = client.get("/visits/alerts", headers=HEADERS).json()
        assert [a["visit_id"] for a in alerts] == [visit_id]

    def test_illegal_visit_transition(self, client):
        visit_id = client.post("/visits", json={"patient_id": "p1"}, headers=HEADERS).json()["id"]
        response = client.post(f"/visits/{visit_id}/transition", json={"state": "departed"}, headers=HEADERS)
        assert response.status_code == 409

    def test_duplicate_walk_in(self, client):
        client.post("/visits", json={"patient_id": "p1"}, headers=HEADERS)
        response = client.post("/visits", json={"patient_id": "p1"}, headers=HEADERS)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "ALREADY_CHECKED_IN"


class TestLifespan:
    """Tests for application startup and shutdown."""

    def test_startup_uses_overridden_engine(self, engine, config):
        config.load_demo_data = True
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            with TestClient(app) as test_client:
                response = test_client.get("/appointments/missing", headers={"X-Clinic-Id": DEMO_CLINIC_ID})
        finally:
            app.dependency_overrides.clear()

        assert engine.calendar.has_clinic(DEMO_CLINIC_ID)
        assert response.status_code == 404
        assert response.json()["detail"]["message"] == "Appointment missing not found"
