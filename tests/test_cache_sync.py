import pytest
from sqlalchemy.exc import OperationalError

from app.crud import waypoint_crud
from app.crud.waypoint_crud import WaypointFields
from app.errors import BroadcastError
from app.models.user import User
from app.realtime.sse_pubsub import InMemoryPublisher, user_room
from app.services.cache_sync import CacheSyncBroadcaster


def fields(name):
    return WaypointFields(name=name, latitude=24.0, longitude=55.0, comment=name, room_number="12")


class FailingSnapshotSync(CacheSyncBroadcaster):
    def __init__(self, publisher, fail_for):
        super().__init__(publisher)
        self.fail_for = fail_for

    def _write_snapshot(self, db, connection_id, user_id, resolutions):
        if user_id == self.fail_for:
            raise OperationalError("UPDATE users", {}, Exception("disk I/O error"))
        super()._write_snapshot(db, connection_id, user_id, resolutions)


class FailingPublisher(InMemoryPublisher):
    def __init__(self, fail_room):
        super().__init__()
        self.fail_room = fail_room

    async def publish(self, event, room, payload):
        if room == self.fail_room:
            raise BroadcastError("redis down")
        await super().publish(event, room, payload)


@pytest.fixture
def hotels(db, group):
    waypoint_crud.mark_group(db, group.id, group.owner.id, "hotel", fields("Grand Hotel"))
    waypoint_crud.mark_personal(db, group.id, group.members[0].id, "hotel", fields("Cheap Inn"))
    db.commit()


def snapshot(db, user):
    db.expire_all()
    return db.query(User).filter(User.id == user.id).one()


def test_sync_all_writes_per_viewer_snapshots(db, group, hotels):
    report = CacheSyncBroadcaster(InMemoryPublisher()).sync_all(db, group.id)

    assert report.ok
    assert set(report.synced) == {group.owner.id, group.members[0].id, group.members[1].id}

    owner = snapshot(db, group.owner)
    assert owner.active_hotel["name"] == "Grand Hotel"
    assert owner.active_hotel["source"] == "group"
    assert owner.active_hotel["room_number"] == "12"
    assert owner.active_bus_station["name"] == "Unmarked"
    assert owner.active_bus_station["is_marked"] is False

    assert snapshot(db, group.members[0]).active_hotel["name"] == "Cheap Inn"
    assert snapshot(db, group.members[1]).active_hotel["name"] == "Grand Hotel"
    assert snapshot(db, group.members[1]).active_hotel["connection_id"] == group.id


def test_one_member_failure_does_not_stop_the_others(db, group, hotels):
    failing = group.members[0]
    report = FailingSnapshotSync(InMemoryPublisher(), fail_for=failing.id).sync_all(db, group.id)

    assert not report.ok
    assert list(report.failed) == [failing.id]
    assert set(report.synced) == {group.owner.id, group.members[1].id}
    assert snapshot(db, failing).active_hotel is None
    assert snapshot(db, group.members[1]).active_hotel["name"] == "Grand Hotel"


@pytest.mark.anyio
async def test_broadcast_to_each_member_room(db, group, hotels):
    publisher = InMemoryPublisher()
    report = await CacheSyncBroadcaster(publisher).sync_and_broadcast(db, group.id)

    assert report.ok
    for user in [group.owner, *group.members]:
        events = publisher.for_room(user_room(user.id))
        assert [e for e, _ in events] == ["active_waypoints_updated"]
    _, payload = publisher.for_room(user_room(group.members[0].id))[0]
    assert payload["hotel"]["name"] == "Cheap Inn"
    assert payload["hotel"]["source"] == "personal"


@pytest.mark.anyio
async def test_broadcast_failure_is_recorded_per_member(db, group, hotels):
    publisher = FailingPublisher(fail_room=user_room(group.members[1].id))
    report = await CacheSyncBroadcaster(publisher).sync_and_broadcast(db, group.id)

    assert not report.ok
    assert list(report.broadcast_failed) == [group.members[1].id]
    # snapshot was still written
    assert snapshot(db, group.members[1]).active_hotel["name"] == "Grand Hotel"
    assert len(publisher.events) == 2


@pytest.mark.anyio
async def test_mark_waypoint_triggers_sync(db, group, tracker, publisher):
    change = await tracker.mark_waypoint(db, group.id, group.owner.id, "bus_station", "group", fields("Central"))

    assert change.report.ok
    assert snapshot(db, group.members[1]).active_bus_station["name"] == "Central"
    assert publisher.for_room(user_room(group.members[1].id))


@pytest.mark.anyio
async def test_delete_waypoint_resyncs_to_group(db, group, hotels, tracker):
    member = group.members[0]
    personal = waypoint_crud.find_personal_waypoint(db, group.id, member.id, "hotel")

    await tracker.delete_waypoint(db, personal.id, member.id)

    assert snapshot(db, member).active_hotel["name"] == "Grand Hotel"


@pytest.mark.anyio
async def test_update_waypoint_publishes_and_resyncs(db, group, hotels, tracker, publisher):
    mark = waypoint_crud.find_group_waypoint(db, group.id, "hotel")

    change = await tracker.update_waypoint(db, mark.id, comment="lobby at 8")

    assert change.report.ok
    events = publisher.for_room(f"connection:{group.id}")
    assert events[-1][0] == "waypoint_updated"
    assert events[-1][1]["comment"] == "lobby at 8"
