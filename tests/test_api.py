import pytest
from fastapi.testclient import TestClient

from conftest import ASSIGNED_AT, PASSWORD, actor, template_payload
from main import app
from services.assignment_service import assign_to_students
from services.template_service import create_template


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


def login(client, user) -> dict:
    res = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_login_rejects_bad_password(client, student):
    res = client.post("/api/auth/login", json={"email": student.email, "password": "wrong"})
    assert res.status_code == 401


def test_requests_without_token_are_unauthorized(client):
    assert client.get("/api/templates").status_code == 401
    assert client.get("/api/templates", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_template_create_assign_and_progress_flow(client, professional, student):
    pro = login(client, professional)
    body = template_payload().model_dump(mode="json")

    created = client.post("/api/templates", json=body, headers=pro)
    assert created.status_code == 201
    template = created.json()
    assert template["version"] == 1
    assert len(template["activities"]) == 3

    assigned = client.post(f"/api/templates/{template['id']}/assign", json={"student_ids": [student.id]}, headers=pro)
    assert assigned.status_code == 200
    instance_id = assigned.json()["successful"][0]["instance_id"]

    me = login(client, student)
    week = client.get(f"/api/instances/{instance_id}/weeks/1", headers=me).json()["items"]
    assert [i["status"] for i in week] == ["pending"] * 3
    pid = week[0]["id"]

    assert client.post(f"/api/progress/{pid}/start", headers=me).json()["status"] == "in_progress"
    done = client.post(f"/api/progress/{pid}/complete", json={"time_spent": 5}, headers=me)
    assert done.status_code == 200
    assert done.json()["points_earned"] == 10

    again = client.post(f"/api/progress/{pid}/complete", json={}, headers=me)
    assert again.status_code == 409
    assert again.json()["error_type"] == "state_conflict"

    instance = client.get(f"/api/instances/{instance_id}", headers=pro).json()
    assert instance["progress_cache"]["completed_activities"] == 1


def test_invalid_template_returns_422_with_details(client, professional):
    body = template_payload(active_days=[], activities=[]).model_dump(mode="json")

    res = client.post("/api/templates", json=body, headers=login(client, professional))

    assert res.status_code == 422
    assert res.json()["error_type"] == "validation"
    assert "Select at least one active day." in res.json()["errors"]


def test_template_edit_forks_version(client, professional):
    pro = login(client, professional)
    t = client.post("/api/templates", json=template_payload().model_dump(mode="json"), headers=pro).json()

    forked = client.put(f"/api/templates/{t['id']}", json={"name": "Renamed routine"}, headers=pro).json()

    assert forked["version"] == 2
    assert forked["id"] != t["id"]
    versions = client.get(f"/api/templates/{t['id']}/versions", headers=pro).json()["templates"]
    assert [v["version"] for v in versions] == [1, 2]


def test_other_students_cannot_touch_progress(client, db, professional, student, make_user):
    t = create_template(db, actor(professional), template_payload())
    instance_id = assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT).successful[0].instance_id
    intruder = login(client, make_user("student"))

    assert client.get(f"/api/instances/{instance_id}", headers=intruder).status_code == 403


def test_forced_reset_requires_coordinator(client, professional, student):
    res = client.post("/api/reset/run", json={"dry_run": True}, headers=login(client, professional))
    assert res.status_code == 403

    res = client.post("/api/reset/run", json={"dry_run": True}, headers=login(client, student))
    assert res.status_code == 403


def test_forced_reset_by_coordinator(client, db, professional, student, coordinator):
    t = create_template(db, actor(professional), template_payload())
    assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT)

    res = client.post("/api/reset/run", json={"dry_run": True}, headers=login(client, coordinator))

    assert res.status_code == 200
    body = res.json()
    assert body["dryRun"] is True
    assert body["processedInstances"] == 0
    assert body["generatedSnapshots"] == 0
    assert body["errors"] == []
    # Week 1 ended long ago relative to the real clock.
    assert len(body["previews"]) == 1


def test_pause_resume_over_http(client, db, professional, student):
    t = create_template(db, actor(professional), template_payload())
    instance_id = assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT).successful[0].instance_id
    pro = login(client, professional)

    assert client.post(f"/api/instances/{instance_id}/pause", headers=pro).json()["status"] == "paused"
    conflict = client.post(f"/api/instances/{instance_id}/pause", headers=pro)
    assert conflict.status_code == 409
    assert client.post(f"/api/instances/{instance_id}/resume", headers=pro).json()["status"] == "active"
