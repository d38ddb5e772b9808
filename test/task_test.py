import json

import pytest
from datetime import datetime, date
from fastapi.testclient import TestClient

from Background.task import create_app, run_missed_punch_check
from main import create_time_clock
from utils.config import load_config

NOW = datetime(2024, 3, 11, 18, 0)
EMPLOYEE = {"X-Employee-Id": "E001"}
THERAPIST = {"X-Employee-Id": "T001", "X-Group": "therapist"}
ADMIN = {"X-Employee-Id": "A001", "X-Role": "admin", "X-Group": "admin"}


@pytest.fixture
def time_clock():
    config = load_config("nonexistent.yaml")
    config["storage"]["backend"] = "memory"
    return create_time_clock(config, clock=lambda: NOW)


@pytest.fixture
def client(time_clock):
    config = load_config("nonexistent.yaml")
    config["storage"]["backend"] = "memory"
    return TestClient(create_app(time_clock, config))


def punch(client, headers, punch_type, hour, minute=0, day=11):
    return client.post(
        "/punch",
        json={"type": punch_type, "timestamp": datetime(2024, 3, day, hour, minute).isoformat()},
        headers=headers,
    )


def test_punch_and_summary(client):
    for punch_type, hour, minute in (("CLOCK_IN", 9, 0), ("MEAL_IN", 12, 0), ("MEAL_OUT", 12, 30), ("CLOCK_OUT", 17, 0)):
        response = punch(client, EMPLOYEE, punch_type, hour, minute)
        assert response.status_code == 200
        assert response.json()["success"] is True

    summaries = client.get("/summaries", params={"range": "current"}, headers=EMPLOYEE).json()
    assert summaries[0]["payable_hours"] == 7.5

    totals = client.get("/summary", params={"date": "2024-03-10"}, headers=EMPLOYEE).json()
    assert totals["period_start"] == "2024-03-01"
    assert totals["total_payable_hours"] == 7.5


def test_illegal_punch_is_rejected(client):
    response = punch(client, EMPLOYEE, "MEAL_OUT", 9)
    assert response.status_code == 400
    assert response.json() == {"success": False, "code": "illegal_transition", "message": "Invalid clock sequence"}


def test_therapist_rest_rejected(client):
    punch(client, THERAPIST, "CLOCK_IN", 9)
    response = punch(client, THERAPIST, "REST_IN", 10)
    assert response.status_code == 400
    assert response.json()["message"] == "Rest break is disabled for therapists."


def test_state_reports_incomplete_days(client):
    punch(client, EMPLOYEE, "CLOCK_IN", 9, day=10)
    body = client.get("/state", headers=EMPLOYEE).json()
    assert body["clocked_in"] is False
    assert body["incomplete_days"] == [{"date": "2024-03-10", "missing": ["CLOCK_OUT"]}]
    assert body["group"] == "non-therapist"


def test_unknown_role_is_unauthenticated(client):
    response = client.get("/state", headers={"X-Employee-Id": "E001", "X-Role": "root"})
    assert response.status_code == 401


def test_correction_flow(client):
    body = {"date": "2024-03-08", "clockIn": "09:00", "clockOut": "17:00", "mealIn": "12:00", "mealOut": "12:30"}
    created = client.post("/corrections", json=body, headers=EMPLOYEE)
    assert created.status_code == 200
    correction_id = created.json()["id"]

    duplicate = client.post("/corrections", json=body, headers=EMPLOYEE)
    assert duplicate.status_code == 409

    forbidden = client.post(f"/corrections/{correction_id}/review", json={"action": "approve"}, headers=EMPLOYEE)
    assert forbidden.status_code == 403

    approved = client.post(f"/corrections/{correction_id}/review", json={"action": "approve"}, headers=ADMIN)
    assert approved.json() == {"success": True, "status": "approved"}

    again = client.post(f"/corrections/{correction_id}/review", json={"action": "deny"}, headers=ADMIN)
    assert again.status_code == 409

    listed = client.get("/corrections", params={"employee": "E001"}, headers=ADMIN).json()
    assert listed[0]["status"] == "approved"

    records = client.get("/records", headers=EMPLOYEE).json()
    assert len(records) == 4
    assert {r["provenance"] for r in records} == {"correction"}


def test_cancel_unknown_correction(client):
    response = client.post("/corrections/missing/cancel", headers=EMPLOYEE)
    assert response.status_code == 404


def test_invalid_custom_range(client):
    response = client.get("/summaries", params={"range": "custom", "start": "2024-03-10"}, headers=EMPLOYEE)
    assert response.status_code == 400
    assert response.json()["code"] == "validation"


def test_run_missed_punch_check(time_clock, client):
    punch(client, EMPLOYEE, "CLOCK_IN", 9, day=10)
    missed = run_missed_punch_check(time_clock, NOW)
    assert [d.date for d in missed["E001"]] == [date(2024, 3, 10)]


def test_aware_timestamps_accepted(client):
    first = client.post("/punch", json={"type": "CLOCK_IN", "timestamp": "2024-03-11T09:00:00Z"}, headers=EMPLOYEE)
    assert first.status_code == 200
    second = client.post("/punch", json={"type": "CLOCK_OUT", "timestamp": "2024-03-11T17:00:00Z"}, headers=EMPLOYEE)
    assert second.status_code == 200

    records = client.get("/records", headers=EMPLOYEE).json()
    assert [r["punch_type"] for r in records] == ["CLOCK_IN", "CLOCK_OUT"]


def test_backdated_punch_is_rejected(client):
    punch(client, EMPLOYEE, "CLOCK_IN", 9)
    punch(client, EMPLOYEE, "CLOCK_OUT", 17)
    response = punch(client, EMPLOYEE, "MEAL_IN", 12)
    assert response.status_code == 400
    assert response.json()["code"] == "validation"


def test_list_employees(tmp_path):
    users = tmp_path / "users.json"
    users.write_text(json.dumps([
        {"employee_id": "T001", "name": "Tara", "group": "therapist"},
        {"employee_id": "A001", "name": "Ada", "role": "admin", "group": "admin"},
    ]), encoding="utf-8")
    config = load_config("nonexistent.yaml")
    config["storage"]["backend"] = "memory"
    config["directory"]["users_file"] = str(users)
    client = TestClient(create_app(create_time_clock(config, clock=lambda: NOW), config))

    listed = client.get("/employees", headers=ADMIN).json()
    assert [(e["employee_id"], e["group"]) for e in listed] == [("T001", "therapist")]
    assert client.get("/employees", headers=EMPLOYEE).status_code == 403
