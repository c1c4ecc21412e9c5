"""
Poll creation, visibility and voting
"""
import asyncio

from database.DB import POLLS


def create_admin_poll(api, admin_token, scope="all", options=("A", "B"), **extra):
    body = {"question": "Pick one", "options": list(options), "scope": scope, **extra}
    return api.client.post("/api/polls", json=body, headers=api.auth(admin_token))


def vote(api, token, poll, option_index):
    option_id = poll["options"][option_index]["_id"]
    return api.client.post(f"/api/polls/{poll['_id']}/vote", json={"optionId": option_id}, headers=api.auth(token))


def test_poll_tally(api, admin_token):
    """A, A, B from three voters; the first voter cannot vote twice"""
    created = create_admin_poll(api, admin_token)
    assert created.status_code == 201
    poll = created.json()["poll"]
    assert [o["votes"] for o in poll["options"]] == [0, 0]

    voters = [api.register_student()[0] for _ in range(3)]
    for token, choice in zip(voters, [0, 0, 1]):
        assert vote(api, token, poll, choice).status_code == 200

    fourth = vote(api, voters[0], poll, 1)
    assert fourth.status_code == 400
    assert fourth.json()["message"] == "Already voted"

    polls = api.client.get("/api/polls/manage", headers=api.auth(admin_token)).json()
    tallied = next(p for p in polls if p["_id"] == poll["_id"])
    assert [o["votes"] for o in tallied["options"]] == [2, 1]
    assert len(tallied["votes"]) == 3
    assert sum(o["votes"] for o in tallied["options"]) == len(tallied["votes"])
    assert [v["optionIndex"] for v in tallied["votes"]].count(0) == 2


def test_vote_errors(api, admin_token):
    poll = create_admin_poll(api, admin_token).json()["poll"]
    token, _ = api.register_student()

    unknown_option = api.client.post(f"/api/polls/{poll['_id']}/vote", json={"optionId": "nope"}, headers=api.auth(token))
    assert unknown_option.status_code == 404

    unknown_poll = api.client.post("/api/polls/missing/vote", json={"optionId": "nope"}, headers=api.auth(token))
    assert unknown_poll.status_code == 404

    api.client.put(f"/api/polls/{poll['_id']}/close", headers=api.auth(admin_token))
    closed = vote(api, token, poll, 0)
    assert closed.status_code == 400
    assert closed.json()["message"] == "Poll is not active"


def test_poll_needs_two_options(api, admin_token):
    response = create_admin_poll(api, admin_token, options=("Only", "  "))
    assert response.status_code == 400


def test_admin_club_poll_fans_out(api, client, admin_token, club):
    other = api.create_club(admin_token, name="Music", club_key="MUS1")
    response = create_admin_poll(api, admin_token, scope="club", clubIds=[club["_id"], other["_id"]])
    assert response.status_code == 201
    polls = response.json()["polls"]
    assert {p["clubId"] for p in polls} == {club["_id"], other["_id"]}
    assert len({p["batchId"] for p in polls}) == 1
    assert polls[0]["options"][0]["_id"] != polls[1]["options"][0]["_id"]


def test_admin_club_poll_validation(api, admin_token, club):
    assert create_admin_poll(api, admin_token, scope="club").status_code == 400
    assert create_admin_poll(api, admin_token, scope="club", clubIds=[club["_id"], "missing"]).status_code == 404


def test_coordinator_poll_is_forced_to_own_club(api, client, admin_token, club, coordinator_token):
    other = api.create_club(admin_token, name="Music", club_key="MUS1")
    response = client.post("/api/polls/club", json={
        "question": "Meeting day?",
        "options": ["Mon", "Fri"],
        "scope": "all",
        "clubId": other["_id"],
    }, headers=api.auth(coordinator_token))
    assert response.status_code == 201
    poll = response.json()["poll"]
    assert poll["scope"] == "club"
    assert poll["clubId"] == club["_id"]

    listed = client.get("/api/polls/club", headers=api.auth(coordinator_token)).json()
    assert [p["_id"] for p in listed] == [poll["_id"]]
    assert listed[0]["clubName"] == "Robotics"


def test_active_poll_visibility(api, client, admin_token, club, coordinator_token):
    everyone = create_admin_poll(api, admin_token, scope="all").json()["poll"]
    coordinators = create_admin_poll(api, admin_token, scope="coordinators").json()["poll"]
    club_poll = create_admin_poll(api, admin_token, scope="club", clubId=club["_id"]).json()["polls"][0]

    member_token, _ = api.register_student()
    api.join(member_token, club["_id"])
    outsider_token, _ = api.register_student()

    def visible(token):
        return {p["_id"] for p in client.get("/api/polls/active", headers=api.auth(token)).json()}

    assert visible(member_token) == {everyone["_id"], club_poll["_id"]}
    assert visible(outsider_token) == {everyone["_id"]}
    assert visible(coordinator_token) == {everyone["_id"], coordinators["_id"]}
    assert visible(admin_token) == {everyone["_id"], coordinators["_id"], club_poll["_id"]}


def test_close_poll(api, client, admin_token, club, coordinator_token):
    own = client.post("/api/polls/club", json={"question": "Q", "options": ["x", "y"]}, headers=api.auth(coordinator_token)).json()["poll"]
    global_poll = create_admin_poll(api, admin_token).json()["poll"]

    assert client.put(f"/api/polls/{global_poll['_id']}/close", headers=api.auth(coordinator_token)).status_code == 403

    closed = client.put(f"/api/polls/{own['_id']}/close", headers=api.auth(coordinator_token))
    assert closed.status_code == 200
    assert closed.json()["poll"]["status"] == "closed"
    assert client.put(f"/api/polls/{own['_id']}/close", headers=api.auth(coordinator_token)).status_code == 200

    active = client.get("/api/polls/manage?status=active", headers=api.auth(admin_token)).json()
    assert [p["_id"] for p in active] == [global_poll["_id"]]
    closed_list = client.get("/api/polls/manage?status=closed", headers=api.auth(admin_token)).json()
    assert [p["_id"] for p in closed_list] == [own["_id"]]


def test_vote_on_stale_read_is_rejected(api, admin_token, db, monkeypatch):
    """The guarded update refuses a second vote even when the first read missed the earlier one"""
    poll = create_admin_poll(api, admin_token).json()["poll"]
    stale = asyncio.run(db.find_one(POLLS, {"_id": poll["_id"]}))
    token, _ = api.register_student()
    assert vote(api, token, poll, 0).status_code == 200

    original_find_one = db.find_one
    reads = []

    async def find_one(collection_name, query, *args, **kwargs):
        if collection_name == POLLS and not reads:
            reads.append(query)
            return dict(stale)
        return await original_find_one(collection_name, query, *args, **kwargs)

    monkeypatch.setattr(db, "find_one", find_one)

    second = vote(api, token, poll, 1)
    assert second.status_code == 400
    assert second.json()["message"] == "Already voted"

    stored = asyncio.run(original_find_one(POLLS, {"_id": poll["_id"]}))
    assert [o["votes"] for o in stored["options"]] == [1, 0]
    assert len(stored["votes"]) == 1


def test_failed_fan_out_leaves_no_polls(api, admin_token, club, db, monkeypatch):
    other = api.create_club(admin_token, name="Music", club_key="MUS1")
    original_add_many = db.add_many

    async def add_many_then_fail(*args, **kwargs):
        await original_add_many(*args, **kwargs)
        raise RuntimeError("connection reset during fan-out")

    monkeypatch.setattr(db, "add_many", add_many_then_fail)

    response = create_admin_poll(api, admin_token, scope="club", clubIds=[club["_id"], other["_id"]])
    assert response.status_code == 500
    assert asyncio.run(db.count(POLLS)) == 0
