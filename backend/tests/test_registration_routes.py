"""
HTTP tests for the registration API.

The app runs against the per-test SQLite database; the registration service
is overridden to use the frozen clock so cancellation windows are stable.
"""

from fastapi import Depends
from fastapi.testclient import TestClient
import pytest

from app.api.dependencies import get_event_publisher, get_registration_service, get_unit_of_work
from app.main import create_app
from app.repositories.unit_of_work import UnitOfWork
from app.services.registration_service import RegistrationService


@pytest.fixture
def app(seeded, engine, email_client, clock):
    application = create_app(session_factory=seeded, bind=engine, email_client=email_client)

    def service_with_frozen_clock(
        uow=Depends(get_unit_of_work), publisher=Depends(get_event_publisher)
    ):
        return RegistrationService(uow, publisher, clock)

    application.dependency_overrides[get_registration_service] = service_with_frozen_clock
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def _private(**overrides):
    body = {
        "student_id": "S1",
        "registration_type": "private",
        "instructor_id": "I1",
        "instrument": "Piano",
        "day": "Wednesday",
        "start_time": "15:00",
        "length": 30,
        "transportation_type": "pickup",
    }
    body.update(overrides)
    return body


class TestCreate:
    def test_created(self, client):
        response = client.post("/api/registrations", json=_private(), headers={"X-User-Id": "A1"})

        assert response.status_code == 201
        data = response.json()
        assert data["registration"]["id"] == "S1_I1_Wednesday_15:00"
        assert data["registration"]["registered_by"] == "A1"
        assert data["registration"]["school_year"] == "2025-2026"
        assert len(data["lesson_schedule"]) == 12

    def test_validation_errors_listed_together(self, client):
        response = client.post(
            "/api/registrations", json=_private(instrument=None, start_time="3pm", length=20)
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "VALIDATION_FAILED"
        assert len(detail["details"]["errors"]) == 3

    def test_unknown_field_is_malformed(self, client):
        response = client.post("/api/registrations", json=_private(colour="blue"))

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "REQUEST_INVALID"

    def test_conflict(self, client):
        assert client.post("/api/registrations", json=_private()).status_code == 201

        response = client.post(
            "/api/registrations", json=_private(student_id="S2", start_time="15:15")
        )

        assert response.status_code == 409
        conflicts = response.json()["detail"]["details"]["conflicts"]
        assert {c["type"] for c in conflicts} == {"instructor_schedule", "room_schedule"}

    @pytest.mark.parametrize("headers", [{}, {"X-User-Id": "I1"}])
    def test_skip_capacity_check_needs_an_admin(self, client, headers):
        response = client.post(
            "/api/registrations",
            json={
                "student_id": "S1",
                "registration_type": "group",
                "class_id": "C1",
                "transportation_type": "bus",
                "skip_capacity_check": True,
            },
            headers=headers,
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "ADMIN_REQUIRED"
        assert client.get("/api/registrations").json() == []

    def test_admin_may_skip_capacity_check(self, client, seeded):
        UnitOfWork(seeded).classes.update("C1", size=1)
        group = {"registration_type": "group", "class_id": "C1", "transportation_type": "bus"}
        assert client.post("/api/registrations", json={"student_id": "S1", **group}).status_code == 201

        full = client.post("/api/registrations", json={"student_id": "S2", **group})
        response = client.post(
            "/api/registrations",
            json={"student_id": "S2", "skip_capacity_check": True, **group},
            headers={"X-User-Id": "A1"},
        )

        assert full.status_code == 422
        assert response.status_code == 201
        assert response.json()["registration"]["id"] == "S2_C1"

    def test_unknown_student(self, client):
        response = client.post("/api/registrations", json=_private(student_id="S9"))

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "STUDENT_NOT_FOUND"

    def test_side_channels_finish_on_shutdown(self, app, seeded, email_client):
        with TestClient(app) as client:
            client.post("/api/registrations", json=_private(), headers={"X-User-Id": "A1"})

        entries = UnitOfWork(seeded).audit_logs.find_for_entity("registration", "S1_I1_Wednesday_15:00")
        assert [e.action for e in entries] == ["created"]
        assert sorted(email_client.recipients()) == ["ava@example.org", "nora@example.org"]


class TestReadAndUpdate:
    @pytest.fixture
    def registration_id(self, client):
        return client.post("/api/registrations", json=_private()).json()["registration"]["id"]

    def test_details(self, client, registration_id):
        response = client.get(f"/api/registrations/{registration_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["student"]["id"] == "S1"
        assert data["room"]["name"] == "Music Room"
        assert data["total_cost"] == 360.0
        assert data["can_be_modified"] is True

    def test_details_not_found(self, client):
        response = client.get("/api/registrations/missing")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "REGISTRATION_NOT_FOUND"

    def test_list_for_term_and_student(self, client, registration_id):
        listing = client.get("/api/registrations", params={"school_year": "2025-2026", "trimester": "Fall"})
        student = client.get("/api/students/S1/registrations")

        assert [r["id"] for r in listing.json()] == [registration_id]
        assert listing.json()[0]["student_name"] == "Ava Reyes"
        assert [r["id"] for r in student.json()] == [registration_id]
        assert client.get("/api/registrations", params={"trimester": "Spring"}).json() == []

    def test_status_update(self, client, registration_id):
        response = client.patch(
            f"/api/registrations/{registration_id}/status", json={"status": "approved"}
        )

        assert response.status_code == 200
        assert response.json()["registration"]["status"] == "approved"

    def test_invalid_status_transition(self, client, registration_id):
        client.patch(f"/api/registrations/{registration_id}/status", json={"status": "approved"})
        client.patch(f"/api/registrations/{registration_id}/status", json={"status": "completed"})

        response = client.patch(
            f"/api/registrations/{registration_id}/status", json={"status": "approved"}
        )

        assert response.status_code == 422


class TestCancel:
    def test_cancel_before_first_lesson(self, client):
        registration_id = client.post("/api/registrations", json=_private()).json()["registration"]["id"]

        response = client.request(
            "DELETE", f"/api/registrations/{registration_id}", json={"reason": "moving"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["refund_eligible"] is True
        assert data["cancellation_info"]["registration"]["status"] == "cancelled"

    def test_inside_window_returns_pending_approval(self, client):
        created = client.post(
            "/api/registrations", json=_private(day="Monday", start_time="13:00")
        ).json()
        registration_id = created["registration"]["id"]

        response = client.delete(f"/api/registrations/{registration_id}")

        assert response.status_code == 202
        assert response.json()["status"] == "pending_approval"
        details = client.get(f"/api/registrations/{registration_id}").json()
        assert details["registration"]["status"] == "pending"

    def test_manager_approval(self, client):
        created = client.post(
            "/api/registrations", json=_private(day="Monday", start_time="13:00")
        ).json()

        response = client.request(
            "DELETE",
            f"/api/registrations/{created['registration']['id']}",
            json={"manager_approved": True},
            headers={"X-User-Id": "A1"},
        )

        assert response.status_code == 200
        assert response.json()["cancellation_info"]["manager_approved"] is True
        assert response.json()["cancellation_info"]["cancelled_by"] == "A1"

    @pytest.mark.parametrize("headers", [{}, {"X-User-Id": "I1"}, {"X-User-Id": "P1"}])
    def test_manager_approval_needs_an_admin(self, client, headers):
        created = client.post(
            "/api/registrations", json=_private(day="Monday", start_time="13:00")
        ).json()
        registration_id = created["registration"]["id"]

        response = client.request(
            "DELETE",
            f"/api/registrations/{registration_id}",
            json={"manager_approved": True},
            headers=headers,
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "ADMIN_REQUIRED"
        assert response.json()["detail"]["details"]["overrides"] == ["manager_approved"]
        details = client.get(f"/api/registrations/{registration_id}").json()
        assert details["registration"]["status"] == "pending"

    def test_same_slot_in_two_terms_cancelled_by_term(self, client):
        fall = client.post("/api/registrations", json=_private(trimester="Fall")).json()
        winter = client.post("/api/registrations", json=_private(trimester="Winter")).json()
        assert fall["registration"]["id"] == winter["registration"]["id"]
        registration_id = fall["registration"]["id"]

        response = client.request(
            "DELETE",
            f"/api/registrations/{registration_id}",
            params={"school_year": "2025-2026", "trimester": "Winter"},
            json={"reason": "schedule change"},
        )

        assert response.status_code == 200
        assert response.json()["cancellation_info"]["registration"]["trimester"] == "Winter"
        fall_details = client.get(
            f"/api/registrations/{registration_id}", params={"trimester": "Fall"}
        ).json()
        assert fall_details["registration"]["status"] == "pending"

    def test_cancel_unknown(self, client):
        assert client.delete("/api/registrations/missing").status_code == 404


class TestLookupsAndOperations:
    def test_available_instructors(self, client):
        response = client.get("/api/students/S1/available-instructors", params={"instrument": "Piano"})

        assert [i["id"] for i in response.json()] == ["I1"]
        assert client.get("/api/students/S9/available-instructors").status_code == 404

    def test_user_lookup(self, client):
        found = client.get("/api/users/lookup", params={"email": "shared@example.org"})
        missing = client.get("/api/users/lookup", params={"email": "nobody@example.org"})

        assert found.json()["type"] == "admin"
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "USER_NOT_FOUND"

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["healthy"] is True

    def test_dashboard(self, client):
        data = client.get("/api/dashboard").json()

        assert data["students"]["total"] == 3

    def test_metrics(self, client):
        client.get("/api/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        assert "registrations_service_operations_total" in response.text
