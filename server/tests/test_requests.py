"""
Leave requests and membership requests: one pending request per student and
club, resolved by the club's coordinator or an admin.
"""
import asyncio

import pytest

from database.DB import LEAVE_REQUESTS


@pytest.fixture
def member(api, club):
    token, user = api.register_student()
    assert api.join(token, club["_id"]).status_code == 200
    return token, user


def request_leave(api, token, club_id, reason="exams"):
    return api.client.post(f"/api/clubs/{club_id}/request-leave", json={"reason": reason}, headers=api.auth(token))


def club_ids(api, token):
    profile = api.client.get("/api/auth/profile", headers=api.auth(token)).json()
    return [c["_id"] for c in profile["clubs"]]


def test_leave_request_approved(api, client, club, coordinator_token, member):
    token, user = member
    created = request_leave(api, token, club["_id"])
    assert created.status_code == 201
    request = created.json()["request"]
    assert request["status"] == "pending"
    assert request["reason"] == "exams"

    pending = client.get("/api/clubs/leave-requests/pending", headers=api.auth(coordinator_token)).json()
    assert [r["_id"] for r in pending] == [request["_id"]]
    assert pending[0]["studentDetails"]["_id"] == user["_id"]
    assert pending[0]["clubDetails"]["name"] == "Robotics"

    response = client.put(f"/api/clubs/leave-requests/{request['_id']}", json={"action": "approve"}, headers=api.auth(coordinator_token))
    assert response.status_code == 200
    processed = response.json()["request"]
    assert processed["status"] == "approved"
    assert processed["processedAt"]
    assert "pendingKey" not in processed

    assert club_ids(api, token) == []
    assert client.get("/api/clubs/leave-requests/pending", headers=api.auth(coordinator_token)).json() == []


def test_leave_request_rejected_keeps_membership(api, client, club, coordinator_token, member):
    token, _ = member
    request = request_leave(api, token, club["_id"]).json()["request"]

    response = client.put(f"/api/clubs/leave-requests/{request['_id']}", json={"action": "reject"}, headers=api.auth(coordinator_token))
    assert response.status_code == 200
    assert response.json()["request"]["status"] == "rejected"
    assert response.json()["request"]["processedAt"]

    assert club_ids(api, token) == [club["_id"]]


def test_only_one_pending_leave_request(api, club, coordinator_token, member):
    token, _ = member
    assert request_leave(api, token, club["_id"]).status_code == 201

    duplicate = request_leave(api, token, club["_id"])
    assert duplicate.status_code == 409


def test_new_leave_request_allowed_after_processing(api, client, club, coordinator_token, member):
    token, _ = member
    first = request_leave(api, token, club["_id"]).json()["request"]
    client.put(f"/api/clubs/leave-requests/{first['_id']}", json={"action": "reject"}, headers=api.auth(coordinator_token))

    assert request_leave(api, token, club["_id"]).status_code == 201


def test_processed_request_cannot_be_processed_again(api, client, club, coordinator_token, member):
    token, _ = member
    request = request_leave(api, token, club["_id"]).json()["request"]
    url = f"/api/clubs/leave-requests/{request['_id']}"

    assert client.put(url, json={"action": "reject"}, headers=api.auth(coordinator_token)).status_code == 200

    again = client.put(url, json={"action": "approve"}, headers=api.auth(coordinator_token))
    assert again.status_code == 400
    assert again.json()["message"] == "Request has already been processed"
    assert club_ids(api, token) == [club["_id"]]


def test_invalid_action(api, client, club, coordinator_token, member):
    token, _ = member
    request = request_leave(api, token, club["_id"]).json()["request"]
    response = client.put(f"/api/clubs/leave-requests/{request['_id']}", json={"action": "maybe"}, headers=api.auth(coordinator_token))
    assert response.status_code == 400


def test_leave_request_preconditions(api, admin_token, club):
    token, _ = api.register_student()

    not_member = request_leave(api, token, club["_id"])
    assert not_member.status_code == 400
    assert not_member.json()["message"] == "You are not a member of this club"

    api.join(token, club["_id"])
    no_coordinator = request_leave(api, token, club["_id"])
    assert no_coordinator.status_code == 404
    assert no_coordinator.json()["message"] == "No coordinator assigned to this club"

    assert request_leave(api, admin_token, club["_id"]).status_code == 403


def test_other_coordinator_cannot_process(api, client, admin_token, club, coordinator_token, member):
    token, _ = member
    request = request_leave(api, token, club["_id"]).json()["request"]

    other_club = api.create_club(admin_token, name="Music", club_key="MUS1")
    other_token, _ = api.create_coordinator(admin_token, other_club["_id"], roll_no="COORD02")

    assert client.get("/api/clubs/leave-requests/pending", headers=api.auth(other_token)).json() == []
    response = client.put(f"/api/clubs/leave-requests/{request['_id']}", json={"action": "approve"}, headers=api.auth(other_token))
    assert response.status_code == 403

    admin_view = client.get("/api/clubs/leave-requests/pending", headers=api.auth(admin_token)).json()
    assert [r["_id"] for r in admin_view] == [request["_id"]]


def test_membership_request_approved(api, client, club, coordinator_token):
    token, _ = api.register_student()
    created = client.post(f"/api/clubs/{club['_id']}/request-membership", json={"message": "please"}, headers=api.auth(token))
    assert created.status_code == 201
    request = created.json()["request"]

    duplicate = client.post(f"/api/clubs/{club['_id']}/request-membership", json={}, headers=api.auth(token))
    assert duplicate.status_code == 409

    pending = client.get("/api/clubs/requests/pending", headers=api.auth(coordinator_token)).json()
    assert [r["_id"] for r in pending] == [request["_id"]]

    response = client.put(f"/api/clubs/requests/{request['_id']}", json={"action": "approve"}, headers=api.auth(coordinator_token))
    assert response.status_code == 200
    assert response.json()["request"]["status"] == "approved"
    assert club_ids(api, token) == [club["_id"]]

    member_again = client.post(f"/api/clubs/{club['_id']}/request-membership", json={}, headers=api.auth(token))
    assert member_again.status_code == 409


def test_membership_request_rejected(api, client, club, coordinator_token):
    token, _ = api.register_student()
    request = client.post(f"/api/clubs/{club['_id']}/request-membership", json={}, headers=api.auth(token)).json()["request"]

    response = client.put(f"/api/clubs/requests/{request['_id']}", json={"action": "reject"}, headers=api.auth(coordinator_token))
    assert response.status_code == 200
    assert club_ids(api, token) == []


def test_concurrent_leave_request_hits_unique_pending_key(api, club, coordinator_token, member, db, monkeypatch):
    """A second request that slips past the pending lookup still conflicts on insert"""
    token, user = member
    assert request_leave(api, token, club["_id"]).status_code == 201

    original_find_one = db.find_one

    async def find_one(collection_name, query, *args, **kwargs):
        if collection_name == LEAVE_REQUESTS:
            return None
        return await original_find_one(collection_name, query, *args, **kwargs)

    monkeypatch.setattr(db, "find_one", find_one)

    duplicate = request_leave(api, token, club["_id"], reason="again")
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "You already have a pending leave request for this club"
    assert asyncio.run(db.count(LEAVE_REQUESTS, {"student": user["_id"]})) == 1
