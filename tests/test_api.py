import pytest
from fastapi.testclient import TestClient

from conftest import MONDAY, booking_payload
from api_server import app, get_scheduler

API_KEY = {"X-API-Key": "test-api-key"}
ADMIN = {**API_KEY, "X-Actor-Id": "admin-1", "X-Actor-Role": "ADMIN"}
ALICE = {**API_KEY, "X-Actor-Id": "alice", "X-Actor-Role": "USER"}
BOB = {**API_KEY, "X-Actor-Id": "bob"}


@pytest.fixture
def client(scheduler):
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def room(client):
    response = client.post(
        "/v1/admin/facilities",
        headers=ADMIN,
        json={
            "name": "Lecture Hall B",
            "type": "LECTURE_HALL",
            "capacity": 120,
            "availability_windows": [
                {"day_of_week": "MONDAY", "start_time": "08:00", "end_time": "17:00"},
            ],
        },
    )
    assert response.status_code == 200, response.text
    return response.json()["facility"]["id"]


def test_health_live(client):
    response = client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_api_key_is_required(client, room):
    assert client.get("/v1/facilities").status_code == 401
    assert client.get("/v1/facilities", headers={"X-API-Key": "wrong"}).status_code == 401


def test_actor_header_is_required(client, room):
    response = client.post("/v1/bookings", headers=API_KEY, json=booking_payload(room))
    assert response.status_code == 401


def test_unknown_role_is_rejected(client, room):
    headers = {**API_KEY, "X-Actor-Id": "x", "X-Actor-Role": "OVERLORD"}
    assert client.post("/v1/bookings", headers=headers, json=booking_payload(room)).status_code == 401


def test_create_review_cancel_flow(client, room):
    created = client.post("/v1/bookings", headers=ALICE, json=booking_payload(room))
    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    assert body["booking"]["status"] == "PENDING"
    booking_id = body["booking"]["id"]

    forbidden = client.post(f"/v1/bookings/{booking_id}/review", headers=ALICE, json={"decision": "APPROVE"})
    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "FORBIDDEN"

    approved = client.post(f"/v1/bookings/{booking_id}/review", headers=ADMIN, json={"decision": "APPROVE"})
    assert approved.status_code == 200
    assert approved.json()["booking"]["status"] == "APPROVED"
    assert approved.json()["booking"]["reviewed_by"] == "admin-1"

    cancelled = client.post(f"/v1/bookings/{booking_id}/cancel", headers=ALICE)
    assert cancelled.status_code == 200
    assert cancelled.json()["booking"]["status"] == "CANCELLED"

    again = client.post(f"/v1/bookings/{booking_id}/cancel", headers=ALICE)
    assert again.status_code == 409
    assert again.json()["error"] == "INVALID_TRANSITION"


def test_conflict_maps_to_409(client, room):
    assert client.post("/v1/bookings", headers=ALICE, json=booking_payload(room)).status_code == 201

    response = client.post("/v1/bookings", headers=BOB, json=booking_payload(room, "09:30", "10:30"))

    assert response.status_code == 409
    assert response.json()["error"] == "SLOT_CONFLICT"


def test_validation_error_maps_to_400(client, room):
    response = client.post("/v1/bookings", headers=ALICE, json=booking_payload(room, "18:00", "19:00"))
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_inactive_facility_maps_to_409(client, room):
    toggled = client.patch(f"/v1/admin/facilities/{room}/status", headers=ADMIN, json={"status": "OUT_OF_SERVICE"})
    assert toggled.status_code == 200

    response = client.post("/v1/bookings", headers=ALICE, json=booking_payload(room))

    assert response.status_code == 409
    assert response.json()["error"] == "FACILITY_INACTIVE"


def test_reject_without_remarks_maps_to_400(client, room):
    booking_id = client.post("/v1/bookings", headers=ALICE, json=booking_payload(room)).json()["booking"]["id"]
    response = client.post(f"/v1/bookings/{booking_id}/review", headers=ADMIN, json={"decision": "REJECT"})
    assert response.status_code == 400


def test_missing_booking_maps_to_404(client):
    assert client.get("/v1/bookings/nope", headers=ALICE).status_code == 404
    assert client.get("/v1/facilities/nope", headers=ALICE).status_code == 404


def test_malformed_body_is_rejected_by_fastapi(client, room):
    payload = booking_payload(room)
    del payload["booking_date"]
    assert client.post("/v1/bookings", headers=ALICE, json=payload).status_code == 422


def test_overlapping_windows_rejected_at_the_boundary(client):
    response = client.post(
        "/v1/admin/facilities",
        headers=ADMIN,
        json={
            "name": "Lab 1",
            "type": "LAB",
            "availability_windows": [
                {"day_of_week": "FRIDAY", "start_time": "08:00", "end_time": "12:00"},
                {"day_of_week": "FRIDAY", "start_time": "09:00", "end_time": "10:00"},
            ],
        },
    )
    assert response.status_code == 422


def test_non_admin_cannot_manage_facilities(client):
    response = client.post("/v1/admin/facilities", headers=ALICE, json={"name": "Cam", "type": "CAMERA"})
    assert response.status_code == 403


def test_my_bookings_and_admin_listing(client, room):
    client.post("/v1/bookings", headers=ALICE, json=booking_payload(room, "09:00", "10:00"))
    client.post("/v1/bookings", headers=BOB, json=booking_payload(room, "10:00", "11:00"))

    mine = client.get("/v1/bookings/my", headers=ALICE).json()["bookings"]
    assert [b["user_id"] for b in mine] == ["alice"]

    everything = client.get("/v1/bookings", headers=ADMIN, params={"facility_id": room}).json()["bookings"]
    assert {b["user_id"] for b in everything} == {"alice", "bob"}

    users_view = client.get("/v1/bookings", headers=BOB).json()["bookings"]
    assert [b["user_id"] for b in users_view] == ["bob"]


def test_availability_endpoint(client, room):
    client.post("/v1/bookings", headers=ALICE, json=booking_payload(room, "09:00", "10:00"))

    response = client.get(f"/v1/facilities/{room}/availability", headers=ALICE, params={"day": MONDAY.isoformat()})

    assert response.status_code == 200
    availability = response.json()["availability"]
    assert availability["day_of_week"] == "MONDAY"
    assert availability["busy"][0]["start_time"] == "09:00:00"
    assert availability["free"] == [
        {"start_time": "08:00:00", "end_time": "09:00:00"},
        {"start_time": "10:00:00", "end_time": "17:00:00"},
    ]


def test_list_facilities_by_type(client, room):
    response = client.get("/v1/facilities", headers=API_KEY, params={"type": "LECTURE_HALL"})
    assert [f["id"] for f in response.json()["facilities"]] == [room]
    response = client.get("/v1/facilities", headers=API_KEY, params={"type": "LAB"})
    assert response.json()["facilities"] == []


def test_delete_booking(client, room):
    booking_id = client.post("/v1/bookings", headers=ALICE, json=booking_payload(room)).json()["booking"]["id"]

    assert client.delete(f"/v1/bookings/{booking_id}", headers=ALICE).status_code == 403
    assert client.delete(f"/v1/bookings/{booking_id}", headers=ADMIN).status_code == 200
    assert client.get(f"/v1/bookings/{booking_id}", headers=ADMIN).status_code == 404


def test_list_facilities_by_search_and_location(client, room):
    client.post(
        "/v1/admin/facilities",
        headers=ADMIN,
        json={"name": "Chemistry Lab", "type": "LAB", "location": "Science Block"},
    )

    by_name = client.get("/v1/facilities", headers=API_KEY, params={"search": "lecture"}).json()["facilities"]
    assert [f["id"] for f in by_name] == [room]

    by_location = client.get("/v1/facilities", headers=API_KEY, params={"location": "science"}).json()["facilities"]
    assert [f["name"] for f in by_location] == ["Chemistry Lab"]


def test_delete_facility(client, room):
    booking_id = client.post("/v1/bookings", headers=ALICE, json=booking_payload(room)).json()["booking"]["id"]

    assert client.delete(f"/v1/admin/facilities/{room}", headers=ALICE).status_code == 403

    in_use = client.delete(f"/v1/admin/facilities/{room}", headers=ADMIN)
    assert in_use.status_code == 409
    assert in_use.json()["error"] == "FACILITY_IN_USE"

    client.post(f"/v1/bookings/{booking_id}/cancel", headers=ALICE)
    assert client.delete(f"/v1/admin/facilities/{room}", headers=ADMIN).status_code == 200
    assert client.get(f"/v1/facilities/{room}", headers=API_KEY).status_code == 404
    assert client.delete(f"/v1/admin/facilities/{room}", headers=ADMIN).status_code == 404
