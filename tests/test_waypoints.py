import pytest
from sqlalchemy.exc import IntegrityError

from app.crud import waypoint_crud
from app.crud.waypoint_crud import WaypointFields
from app.errors import AuthorizationError, NotFoundError, ValidationError
from app.models.user import User
from app.models.waypoint import MarkedWaypoint
from app.utils.timeutils import utcnow


def fields(name="Central Bus Stop", lat=24.1, lng=55.2, comment="meet here", images=None, room=None):
    return WaypointFields(
        name=name, latitude=lat, longitude=lng, comment=comment, images=images or [], room_number=room
    )


def rows(db, **filters):
    return db.query(MarkedWaypoint).filter_by(**filters).all()


def test_personal_mark_replaces_previous(db, group):
    user = group.members[0]
    waypoint_crud.mark_personal(db, group.id, user.id, "bus_station", fields(name="A"))
    waypoint_crud.mark_personal(db, group.id, user.id, "bus_station", fields(name="B"))
    db.commit()

    marks = rows(db, connection_id=group.id, scope="personal", scope_user_id=user.id, type="bus_station")
    assert [m.name for m in marks] == ["B"]
    assert marks[0].is_owner_marked is False
    assert marks[0].marked_by == user.id


def test_group_mark_replaces_previous(db, group):
    waypoint_crud.mark_group(db, group.id, group.owner.id, "hotel", fields(name="Old", room="101"))
    waypoint_crud.mark_group(db, group.id, group.owner.id, "hotel", fields(name="New", room="202"))
    db.commit()

    marks = rows(db, connection_id=group.id, scope="group", type="hotel")
    assert [m.name for m in marks] == ["New"]
    assert marks[0].is_owner_marked is True
    assert marks[0].scope_user_id is None
    assert marks[0].room_number == "202"


def test_personal_marks_of_different_users_coexist(db, group):
    a, b = group.members
    waypoint_crud.mark_personal(db, group.id, a.id, "hotel", fields(name="A"))
    waypoint_crud.mark_personal(db, group.id, b.id, "hotel", fields(name="B"))
    waypoint_crud.mark_personal(db, group.id, a.id, "bus_station", fields(name="A bus"))
    db.commit()

    assert len(rows(db, connection_id=group.id, type="hotel")) == 2
    assert len(rows(db, connection_id=group.id)) == 3


@pytest.mark.parametrize(
    "bad",
    [
        dict(lat=91.0),
        dict(lat=-90.5),
        dict(lng=180.1),
        dict(name=""),
        dict(name="x" * 101),
        dict(comment=""),
        dict(comment="x" * 501),
        dict(images=["a.jpg", "b.jpg"]),
    ],
)
def test_invalid_fields_rejected_before_mutation(db, group, bad):
    user = group.members[0]
    waypoint_crud.mark_personal(db, group.id, user.id, "hotel", fields(name="Keep me"))
    db.commit()

    with pytest.raises(ValidationError):
        waypoint_crud.mark_personal(db, group.id, user.id, "hotel", fields(**bad))
    db.rollback()

    assert [m.name for m in rows(db, connection_id=group.id)] == ["Keep me"]


def test_unknown_type_rejected(db, group):
    with pytest.raises(ValidationError):
        waypoint_crud.mark_personal(db, group.id, group.members[0].id, "airport", fields())


def test_partial_unique_index_rejects_second_group_mark(db, group):
    now = utcnow()
    for name in ("A", "B"):
        db.add(
            MarkedWaypoint(
                connection_id=group.id,
                type="hotel",
                scope="group",
                name=name,
                latitude=1.0,
                longitude=1.0,
                comment="c",
                images=[],
                marked_by=group.owner.id,
                is_owner_marked=True,
                marked_at=now,
                updated_at=now,
            )
        )
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_update_waypoint(db, group):
    mark = waypoint_crud.mark_personal(db, group.id, group.members[0].id, "hotel", fields())
    db.commit()
    before = mark.updated_at

    updated = waypoint_crud.update_waypoint(db, mark.id, comment="room 7 upstairs", images=["a.jpg", "b.jpg"])
    db.commit()

    assert updated.comment == "room 7 upstairs"
    assert updated.images == ["a.jpg", "b.jpg"]
    assert updated.updated_at >= before


def test_update_waypoint_limits(db, group):
    mark = waypoint_crud.mark_personal(db, group.id, group.members[0].id, "hotel", fields())
    db.commit()
    with pytest.raises(ValidationError):
        waypoint_crud.update_waypoint(db, mark.id, images=["a", "b", "c"])
    with pytest.raises(NotFoundError):
        waypoint_crud.update_waypoint(db, 9999, comment="x")


def test_only_marker_can_delete(db, group):
    a, b = group.members
    mark = waypoint_crud.mark_personal(db, group.id, a.id, "hotel", fields())
    db.commit()

    with pytest.raises(AuthorizationError):
        waypoint_crud.delete_waypoint(db, mark.id, b.id)

    waypoint_crud.delete_waypoint(db, mark.id, a.id)
    db.commit()
    assert rows(db, connection_id=group.id) == []


@pytest.mark.anyio
async def test_non_owner_cannot_mark_group(db, group, tracker):
    with pytest.raises(AuthorizationError):
        await tracker.mark_waypoint(db, group.id, group.members[0].id, "hotel", "group", fields())
    db.rollback()
    assert rows(db, connection_id=group.id) == []


@pytest.mark.anyio
async def test_non_member_cannot_mark(db, group, tracker):
    outsider = User(name="Eve")
    db.add(outsider)
    db.commit()
    with pytest.raises(AuthorizationError):
        await tracker.mark_waypoint(db, group.id, outsider.id, "hotel", "personal", fields())


@pytest.mark.anyio
async def test_unknown_scope(db, group, tracker):
    with pytest.raises(ValidationError):
        await tracker.mark_waypoint(db, group.id, group.owner.id, "hotel", "global", fields())
