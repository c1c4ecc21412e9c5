"""
Feedback from students to coordinators, and escalation to admins
"""
import pytest


@pytest.fixture
def student_feedback(api, club):
    token, _ = api.register_student()
    response = api.client.post("/api/feedback", json={
        "clubId": club["_id"],
        "subject": "Workshop timing",
        "message": "Evenings would be better",
        "type": "suggestion",
    }, headers=api.auth(token))
    assert response.status_code == 201
    return token, response.json()["feedback"]


def test_student_feedback_reaches_coordinator(api, client, coordinator_token, student_feedback):
    token, feedback = student_feedback
    assert feedback["status"] == "pending"
    assert feedback["isToAdmin"] is False

    inbox = client.get("/api/feedback/club", headers=api.auth(coordinator_token)).json()
    assert [f["_id"] for f in inbox] == [feedback["_id"]]
    assert inbox[0]["clubDetails"]["name"] == "Robotics"

    mine = client.get("/api/feedback/my", headers=api.auth(token)).json()
    assert [f["_id"] for f in mine] == [feedback["_id"]]


def test_feedback_for_unknown_club(api, client):
    token, _ = api.register_student()
    response = client.post("/api/feedback", json={"clubId": "missing", "subject": "s", "message": "m"}, headers=api.auth(token))
    assert response.status_code == 404


def test_coordinator_resolves_and_solves(api, client, coordinator_token, student_feedback):
    _, feedback = student_feedback
    url = f"/api/feedback/{feedback['_id']}/action"

    resolved = client.put(url, json={"action": "resolve", "responseMessage": "Moved to 6pm"}, headers=api.auth(coordinator_token))
    assert resolved.status_code == 200
    assert resolved.json()["feedback"]["status"] == "resolved"
    assert resolved.json()["feedback"]["responseMessage"] == "Moved to 6pm"

    solved = client.put(url, json={"action": "solve"}, headers=api.auth(coordinator_token))
    assert solved.json()["feedback"]["status"] == "solved"

    assert client.put(url, json={"action": "delete"}, headers=api.auth(coordinator_token)).status_code == 400


def test_forward_escalates_to_admin(api, client, admin_token, coordinator_token, student_feedback):
    _, feedback = student_feedback
    forwarded = client.put(f"/api/feedback/{feedback['_id']}/action", json={"action": "forward"}, headers=api.auth(coordinator_token))
    assert forwarded.status_code == 200
    assert forwarded.json()["feedback"]["status"] == "escalated"
    assert forwarded.json()["feedback"]["isToAdmin"] is True

    assert client.get("/api/feedback/club", headers=api.auth(coordinator_token)).json() == []
    admin_inbox = client.get("/api/feedback/admin", headers=api.auth(admin_token)).json()
    assert [f["_id"] for f in admin_inbox] == [feedback["_id"]]

    resolved = client.put(f"/api/feedback/{feedback['_id']}/admin-action", json={"action": "resolve"}, headers=api.auth(admin_token))
    assert resolved.status_code == 200
    assert resolved.json()["feedback"]["status"] == "resolved"


def test_coordinator_cannot_act_on_other_clubs(api, client, admin_token, student_feedback):
    _, feedback = student_feedback
    other = api.create_club(admin_token, name="Music", club_key="MUS1")
    other_token, _ = api.create_coordinator(admin_token, other["_id"], roll_no="COORD02")

    response = client.put(f"/api/feedback/{feedback['_id']}/action", json={"action": "resolve"}, headers=api.auth(other_token))
    assert response.status_code == 403


def test_unassigned_coordinator_gets_bad_request(api, client, admin_token, club, student_feedback):
    _, feedback = student_feedback
    token, _ = api.create_coordinator(admin_token, club["_id"])
    client.delete(f"/api/clubs/{club['_id']}", headers=api.auth(admin_token))

    response = client.put(f"/api/feedback/{feedback['_id']}/action", json={"action": "resolve"}, headers=api.auth(token))
    assert response.status_code == 400
    assert response.json()["message"] == "No club assigned to this coordinator"


def test_coordinator_feedback_to_admin(api, client, admin_token, coordinator_token):
    response = client.post("/api/feedback/admin", json={"subject": "Budget", "message": "Need more", "type": "request"}, headers=api.auth(coordinator_token))
    assert response.status_code == 201
    feedback = response.json()["feedback"]
    assert feedback["isToAdmin"] is True
    assert feedback["club"] is None

    escalated = client.put(f"/api/feedback/{feedback['_id']}/admin-action", json={"action": "escalate"}, headers=api.auth(admin_token))
    assert escalated.json()["feedback"]["status"] == "escalated"


def test_admin_action_only_on_admin_items(api, client, admin_token, student_feedback):
    _, feedback = student_feedback
    response = client.put(f"/api/feedback/{feedback['_id']}/admin-action", json={"action": "resolve"}, headers=api.auth(admin_token))
    assert response.status_code == 400
