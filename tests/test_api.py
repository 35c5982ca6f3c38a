from app.models.user import User


def ping(client, group, user, **extra):
    body = {"user_id": user.id, "connection_id": group.id, "latitude": 24.1, "longitude": 55.2, **extra}
    return client.post("/locations", json=body)


def mark(client, group, user, **extra):
    body = {
        "user_id": user.id,
        "type": "hotel",
        "scope": "personal",
        "name": "Cheap Inn",
        "latitude": 24.0,
        "longitude": 55.0,
        "comment": "near the station",
        **extra,
    }
    return client.post(f"/connections/{group.id}/waypoints", json=body)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_post_location_persists_and_broadcasts(client, group, publisher):
    user = group.members[0]
    res = ping(client, group, user, speed=1.5, sequence=1)

    assert res.status_code == 200
    data = res.json()
    assert data["persisted"] is True
    assert data["duplicate"] is False
    assert data["sample"]["latitude"] == 24.1

    events = publisher.for_room(f"connection:{group.id}")
    assert events[0][0] == "location_updated"
    assert events[0][1]["user_id"] == user.id


def test_duplicate_sequence_is_ignored(client, group, publisher):
    user = group.members[0]
    ping(client, group, user, sequence=3)
    res = ping(client, group, user, latitude=30.0, sequence=3)

    assert res.json()["duplicate"] is True
    assert res.json()["sample"]["latitude"] == 24.1
    assert len(publisher.events) == 1


def test_post_location_validation(client, group):
    assert ping(client, group, group.members[0], latitude=95).status_code == 422


def test_post_location_non_member(client, group, db):
    outsider = User(name="Eve")
    db.add(outsider)
    db.commit()

    res = ping(client, group, outsider)
    assert res.status_code == 403
    assert res.json()["detail"]["kind"] == "authorization"


def test_user_location_hybrid_read(client, group, clock, cache):
    user = group.members[0]
    assert client.get(f"/locations/users/{user.id}").status_code == 404

    ping(client, group, user)
    res = client.get(f"/locations/users/{user.id}")
    assert res.json()["source"] == "cache"

    clock.advance(130)
    cache.sweep()
    res = client.get(f"/locations/users/{user.id}")
    assert res.json()["source"] == "store"
    assert res.json()["is_stale"] is True


def test_group_locations(client, group):
    ping(client, group, group.members[0])
    res = client.get(f"/locations/connections/{group.id}", params={"user_id": group.owner.id})

    assert res.status_code == 200
    members = {m["user_id"]: m for m in res.json()["members"]}
    assert len(members) == 3
    assert members[group.members[0].id]["location"]["source"] == "cache"
    assert members[group.members[1].id]["location"] is None
    assert members[group.owner.id]["role"] == "owner"


def test_group_locations_unknown_connection(client):
    res = client.get("/locations/connections/9999")
    assert res.status_code == 404
    assert res.json()["detail"]["kind"] == "not_found"


def test_failed_reads_release_the_session(client, group, db):
    user = group.members[0]

    assert client.get(f"/locations/users/{user.id}").status_code == 404
    assert not db.in_transaction()
    assert client.get("/locations/connections/9999/history").status_code == 404
    assert not db.in_transaction()
    assert client.get("/connections/9999/waypoints/active", params={"user_id": user.id}).status_code == 404
    assert not db.in_transaction()

    assert ping(client, group, user).json()["persisted"] is True
    assert client.get(f"/locations/users/{user.id}").status_code == 200


def test_offline_keeps_cache_entry(client, group, db):
    user = group.members[0]
    ping(client, group, user)

    res = client.post("/locations/offline", json={"user_id": user.id})
    assert res.json() == {
        "user_id": user.id,
        "cached": True,
        "connection_ids": [group.id],
        "persisted": True,
        "error": None,
    }

    status = client.get("/locations/memory-status").json()
    assert status["total_cached"] == 1
    assert status["users"][0]["online"] is False

    history = client.get(f"/locations/connections/{group.id}/history").json()
    assert history["stats"]["active_user_count"] == 0
    assert history["members"][0]["online"] is False


def test_history_and_cleanup(client, group, clock):
    user = group.members[0]
    for i in range(4):
        clock.advance(1)
        ping(client, group, user, latitude=10.0 + i)

    history = client.get(f"/locations/connections/{group.id}/history", params={"hours": 1}).json()
    assert [p["latitude"] for p in history["members"][0]["history"]] == [10.0, 11.0, 12.0, 13.0]
    assert history["stats"]["total_samples"] == 4

    res = client.delete("/locations/cleanup", params={"keep": 2})
    assert res.json() == {"trimmed_members": 1, "keep": 2}
    history = client.get(f"/locations/connections/{group.id}/history").json()
    assert [p["latitude"] for p in history["members"][0]["history"]] == [12.0, 13.0]


def test_mark_and_resolve(client, group):
    owner, member = group.owner, group.members[0]
    res = mark(client, group, owner, scope="group", name="Grand Hotel", room_number="501")
    assert res.status_code == 201
    assert res.json()["sync"]["ok"] is True
    assert res.json()["waypoint"]["is_owner_marked"] is True

    assert mark(client, group, member).status_code == 201

    member_view = client.get(f"/connections/{group.id}/waypoints/active", params={"user_id": member.id}).json()
    assert member_view["is_owner"] is False
    assert member_view["hotel"]["name"] == "Cheap Inn"
    assert member_view["bus_station"]["name"] == "Unmarked"

    owner_view = client.get(f"/connections/{group.id}/waypoints/active", params={"user_id": owner.id}).json()
    assert owner_view["is_owner"] is True
    assert owner_view["hotel"]["name"] == "Grand Hotel"
    assert owner_view["hotel"]["room_number"] == "501"

    assert len(client.get(f"/connections/{group.id}/waypoints").json()) == 2


def test_member_cannot_mark_group(client, group):
    res = mark(client, group, group.members[0], scope="group")
    assert res.status_code == 403
    assert res.json()["detail"]["kind"] == "authorization"


def test_update_and_delete_waypoint(client, group):
    member = group.members[0]
    waypoint_id = mark(client, group, member).json()["waypoint"]["id"]

    res = client.put(f"/connections/waypoints/{waypoint_id}", json={"comment": "room 7"})
    assert res.status_code == 200
    assert res.json()["waypoint"]["comment"] == "room 7"

    res = client.delete(f"/connections/waypoints/{waypoint_id}", params={"user_id": group.members[1].id})
    assert res.status_code == 403

    res = client.delete(f"/connections/waypoints/{waypoint_id}", params={"user_id": member.id})
    assert res.status_code == 200
    assert client.get(f"/connections/{group.id}/waypoints").json() == []

    assert client.put("/connections/waypoints/9999", json={"comment": "x"}).status_code == 404


def test_transfer_ownership(client, group):
    owner, new_owner = group.owner, group.members[0]
    mark(client, group, owner, scope="group", name="Grand Hotel")
    mark(client, group, new_owner, name="Cheap Inn")

    res = client.post(
        f"/connections/{group.id}/transfer-ownership",
        json={
            "current_owner_id": owner.id,
            "new_owner_id": new_owner.id,
            "choices": {"hotel": "use_personal_as_group"},
        },
    )
    assert res.status_code == 200
    assert res.json()["outcomes"] == {"bus_station": "kept", "hotel": "converted"}

    view = client.get(f"/connections/{group.id}/waypoints/active", params={"user_id": owner.id}).json()
    assert view["is_owner"] is False
    assert view["hotel"]["name"] == "Cheap Inn"
    assert view["hotel"]["source"] == "group"


def test_transfer_ownership_errors(client, group):
    url = f"/connections/{group.id}/transfer-ownership"
    a, b = group.members

    res = client.post(url, json={"current_owner_id": a.id, "new_owner_id": b.id})
    assert res.status_code == 403

    res = client.post(url, json={"current_owner_id": group.owner.id, "new_owner_id": 9999})
    assert res.status_code == 404

    res = client.post(url, json={"current_owner_id": group.owner.id, "new_owner_id": a.id, "choices": {"hotel": "x"}})
    assert res.status_code == 422
