"""HTTP surface: response envelope, error codes, auth, end-to-end flows."""

import pytest
from sqlalchemy import text


async def _temp_user(client, nickname="tester"):
    resp = await client.post("/users/temporary", json={"nickname": nickname})
    assert resp.status_code == 200
    data = resp.json()["data"]
    return data["user_id"], {"Authorization": f"Bearer {data['token']}"}


async def _make_group(client, headers, **overrides):
    body = {"name": "Lunch crew", "location_name": "Plaza", "lat": 40.0, "lng": -75.0}
    body.update(overrides)
    resp = await client.post("/groups", json=body, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


# ===================================================================
# envelope / errors
# ===================================================================


@pytest.mark.asyncio
async def test_success_envelope(client):
    _, headers = await _temp_user(client)
    group = await _make_group(client, headers)
    assert group["member_count"] == 1
    assert (group["lat"], group["lng"]) == (40.0, -75.0)

    resp = await client.get(f"/groups/{group['group_id']}", headers=headers)
    body = resp.json()
    assert body["code"] == 0
    assert body["msg"] == "success"
    assert body["data"]["group_id"] == group["group_id"]


@pytest.mark.asyncio
async def test_missing_token(client):
    resp = await client.post("/groups", json={"name": "x", "location_name": "y", "lat": 1, "lng": 1})
    assert resp.status_code == 401
    assert resp.json() == {"code": 1002, "msg": "Missing bearer token", "data": None}


@pytest.mark.asyncio
async def test_bad_token(client):
    resp = await client.get("/users/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["code"] == 1002


@pytest.mark.asyncio
async def test_out_of_range_latitude_is_validation_error(client, session_factory):
    _, headers = await _temp_user(client)
    resp = await client.post(
        "/groups", json={"name": "x", "location_name": "y", "lat": 95, "lng": 0}, headers=headers
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == 1000
    with session_factory() as s:
        assert s.execute(text("SELECT COUNT(*) FROM groups")).scalar() == 0


@pytest.mark.asyncio
async def test_unknown_group(client):
    _, headers = await _temp_user(client)
    resp = await client.get("/groups/does-not-exist", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == 1004


@pytest.mark.asyncio
async def test_duplicate_join_conflict(client):
    _, owner_headers = await _temp_user(client, "owner")
    _, headers = await _temp_user(client, "guest")
    group = await _make_group(client, owner_headers)

    first = await client.post(f"/groups/{group['group_id']}/join", headers=headers)
    assert first.json()["data"]["member_count"] == 2
    second = await client.post(f"/groups/{group['group_id']}/join", headers=headers)
    assert second.status_code == 409
    assert second.json()["code"] == 1001


@pytest.mark.asyncio
async def test_invariant_violation_is_internal_error(client, session_factory):
    _, headers = await _temp_user(client)
    group = await _make_group(client, headers)
    with session_factory() as s:
        s.execute(text("UPDATE groups SET member_count = 0 WHERE group_id = :g"), {"g": group["group_id"]})
        s.commit()

    resp = await client.post(f"/groups/{group['group_id']}/leave", headers=headers)
    assert resp.status_code == 500
    assert resp.json() == {"code": 5000, "msg": "Internal server error", "data": None}


@pytest.mark.asyncio
async def test_radius_over_maximum(client):
    _, headers = await _temp_user(client)
    resp = await client.get("/groups/nearby", params={"lat": 0, "lng": 0, "radius": 50000}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == 1000


# ===================================================================
# flows
# ===================================================================


@pytest.mark.asyncio
async def test_register_login_me(client):
    resp = await client.post("/users/register", json={"user_id": "zoe", "password": "hunter22", "nickname": "Zoe"})
    assert resp.status_code == 200
    assert resp.json()["data"]["recovery_code"]

    resp = await client.post("/users/login", json={"user_id": "zoe", "password": "hunter22"})
    token = resp.json()["data"]["token"]
    me = await client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["nickname"] == "Zoe"

    bad = await client.post("/users/login", json={"user_id": "zoe", "password": "wrong-pass"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_nearby_groups(client):
    _, headers = await _temp_user(client)
    a = await _make_group(client, headers, name="A", lat=40.0, lng=-75.0)
    b = await _make_group(client, headers, name="B", lat=40.001, lng=-75.001)

    wide = await client.get("/groups/nearby", params={"lat": 40.0, "lng": -75.0, "radius": 1000}, headers=headers)
    assert [g["group_id"] for g in wide.json()["data"]] == [a["group_id"], b["group_id"]]

    narrow = await client.get("/groups/nearby", params={"lat": 40.0, "lng": -75.0, "radius": 50}, headers=headers)
    assert [g["group_id"] for g in narrow.json()["data"]] == [a["group_id"]]


@pytest.mark.asyncio
async def test_message_flow(client):
    _, headers = await _temp_user(client, "host")
    _, outsider = await _temp_user(client, "outsider")
    group = await _make_group(client, headers)
    gid = group["group_id"]

    for i in range(3):
        resp = await client.post(f"/groups/{gid}/messages", json={"content": f"hi {i}"}, headers=headers)
        assert resp.status_code == 200

    page = await client.get(f"/groups/{gid}/messages", params={"limit": 2}, headers=headers)
    data = page.json()["data"]
    assert [m["content"] for m in data["messages"]] == ["hi 2", "hi 1"]

    rest = await client.get(f"/groups/{gid}/messages", params={"limit": 2, "cursor": data["next_cursor"]}, headers=headers)
    assert [m["content"] for m in rest.json()["data"]["messages"]] == ["hi 0"]
    assert rest.json()["data"]["next_cursor"] is None

    denied = await client.post(f"/groups/{gid}/messages", json={"content": "let me in"}, headers=outsider)
    assert denied.status_code == 403
    assert denied.json()["code"] == 1003


@pytest.mark.asyncio
async def test_location_flow(client):
    me, headers = await _temp_user(client, "me")
    friend, friend_headers = await _temp_user(client, "friend")

    await client.post("/locations", json={"lat": 40.0, "lng": -75.0}, headers=headers)
    await client.post("/locations", json={"lat": 40.001, "lng": -75.001, "accuracy": 5}, headers=friend_headers)

    mine = await client.get("/locations/me", headers=headers)
    assert (mine.json()["data"]["lat"], mine.json()["data"]["lng"]) == (40.0, -75.0)

    nearby = await client.get("/users/nearby", params={"lat": 40.0, "lng": -75.0, "radius": 500}, headers=headers)
    users = nearby.json()["data"]
    assert [u["user_id"] for u in users] == [friend]
    assert users[0]["nickname"] == "friend"

    checkin = await client.post(
        "/activities",
        json={"activity_type": "USER_CHECKIN", "activity_details": "cafe", "lat": 40.0005, "lng": -75.0},
        headers=headers,
    )
    assert checkin.status_code == 200
    history = await client.get("/users/me/activities", headers=headers)
    assert [a["activity_type"] for a in history.json()["data"]] == ["USER_CHECKIN", "LOCATION_UPDATE"]

    around = await client.get("/activities/nearby", params={"lat": 40.0, "lng": -75.0, "radius": 200}, headers=friend_headers)
    assert {a["user_id"] for a in around.json()["data"]} == {me, friend}


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_nearby_activities_filtered_by_type(client):
    _, headers = await _temp_user(client)
    await client.post("/locations", json={"lat": 40.0, "lng": -75.0}, headers=headers)
    await client.post(
        "/activities",
        json={"activity_type": "USER_CHECKIN", "activity_details": "park", "lat": 40.0002, "lng": -75.0},
        headers=headers,
    )

    params = {"lat": 40.0, "lng": -75.0, "radius": 200, "types": "USER_CHECKIN"}
    resp = await client.get("/activities/nearby", params=params, headers=headers)
    assert [a["activity_type"] for a in resp.json()["data"]] == ["USER_CHECKIN"]

    params["types"] = ["USER_CHECKIN", "LOCATION_UPDATE"]
    resp = await client.get("/activities/nearby", params=params, headers=headers)
    assert sorted(a["activity_type"] for a in resp.json()["data"]) == ["LOCATION_UPDATE", "USER_CHECKIN"]


@pytest.mark.asyncio
async def test_activity_history_visible_only_to_self_and_group_mates(client):
    owner, owner_headers = await _temp_user(client, "owner")
    _, mate_headers = await _temp_user(client, "mate")
    _, stranger_headers = await _temp_user(client, "stranger")
    await client.post("/locations", json={"lat": 1.0, "lng": 2.0}, headers=owner_headers)

    own = await client.get(f"/users/{owner}/activities", headers=owner_headers)
    assert own.status_code == 200
    assert len(own.json()["data"]) == 1

    denied = await client.get(f"/users/{owner}/activities", headers=stranger_headers)
    assert denied.status_code == 403
    assert denied.json()["code"] == 1003

    group = await _make_group(client, owner_headers)
    await client.post(f"/groups/{group['group_id']}/join", headers=mate_headers)
    shared = await client.get(f"/users/{owner}/activities", headers=mate_headers)
    assert shared.status_code == 200
    assert [a["user_id"] for a in shared.json()["data"]] == [owner]

    missing = await client.get("/users/nobody-here/activities", headers=mate_headers)
    assert missing.status_code == 404
