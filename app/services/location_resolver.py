# Location resolver: hybrid cache/store read + active waypoint priority

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.crud import location_crud, waypoint_crud
from app.models.waypoint import WAYPOINT_TYPES, MarkedWaypoint, WaypointScope
from app.services.location_cache import LocationCache, PositionSample
from app.utils.timeutils import as_utc

SOURCE_CACHE = "cache"
SOURCE_STORE = "store"

SOURCE_PERSONAL = "personal"
SOURCE_GROUP = "group"
SOURCE_UNMARKED = "unmarked"
UNMARKED_NAME = "Unmarked"


@dataclass(frozen=True)
class LocationLookup:
    sample: PositionSample
    source: str  # "cache" | "store"
    is_stale: bool


@dataclass(frozen=True)
class ActiveWaypoint:
    """Resolved waypoint for one viewer and type; the 'Unmarked' sentinel when nothing applies."""

    type: str
    source: str
    is_marked: bool
    waypoint_id: Optional[int] = None
    name: str = UNMARKED_NAME
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    comment: Optional[str] = None
    distance: Optional[float] = None
    room_number: Optional[str] = None
    images: List[str] = field(default_factory=list)
    marked_by: Optional[int] = None
    marked_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_snapshot(self, connection_id: int, now: datetime) -> Dict[str, Any]:
        """Denormalized form stored on the user row."""
        snapshot = {
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "source": self.source,
            "waypoint_id": self.waypoint_id,
            "connection_id": connection_id,
            "is_marked": self.is_marked,
            "last_updated": now.isoformat(),
        }
        if self.type == "hotel":
            snapshot["room_number"] = self.room_number
        return snapshot


def get_user_location_with_fallback(db: Session, cache: LocationCache, user_id: int) -> Optional[LocationLookup]:
    """
    1. fresh cache entry -> source=cache, is_stale=False
    2. else the user's current sample in the store -> source=store,
       is_stale = age > TTL
    3. else None

    Store reads are never written back into the cache.
    """
    entry = cache.get_fresh(user_id)
    if entry is not None:
        return LocationLookup(sample=entry.sample, source=SOURCE_CACHE, is_stale=False)

    member = location_crud.get_latest_member_location(db, user_id)
    if member is None:
        return None

    sample = location_crud.member_to_sample(member)
    is_stale = cache.now() - sample.timestamp > cache.ttl
    return LocationLookup(sample=sample, source=SOURCE_STORE, is_stale=is_stale)


def _unmarked(waypoint_type: str) -> ActiveWaypoint:
    return ActiveWaypoint(type=waypoint_type, source=SOURCE_UNMARKED, is_marked=False)


def _from_waypoint(waypoint: MarkedWaypoint, source: str) -> ActiveWaypoint:
    return ActiveWaypoint(
        type=waypoint.type,
        source=source,
        is_marked=True,
        waypoint_id=waypoint.id,
        name=waypoint.name,
        latitude=waypoint.latitude,
        longitude=waypoint.longitude,
        comment=waypoint.comment,
        distance=waypoint.distance,
        room_number=waypoint.room_number,
        images=list(waypoint.images or []),
        marked_by=waypoint.marked_by,
        marked_at=as_utc(waypoint.marked_at),
        updated_at=as_utc(waypoint.updated_at),
    )


def resolve_active_waypoint(
    waypoints: Iterable[MarkedWaypoint],
    user_id: int,
    waypoint_type: str,
    is_owner: bool,
) -> ActiveWaypoint:
    """
    Priority for one viewer:
    - owner: group mark, else unmarked. The owner's own personal mark is
      never active for them.
    - member: personal mark, else group mark, else unmarked.
    """
    group = None
    personal = None
    for waypoint in waypoints:
        if waypoint.type != waypoint_type:
            continue
        if waypoint.scope == WaypointScope.GROUP.value:
            group = waypoint
        elif waypoint.scope == WaypointScope.PERSONAL.value and waypoint.scope_user_id == user_id:
            personal = waypoint

    if is_owner:
        return _from_waypoint(group, SOURCE_GROUP) if group is not None else _unmarked(waypoint_type)

    if personal is not None:
        return _from_waypoint(personal, SOURCE_PERSONAL)
    if group is not None:
        return _from_waypoint(group, SOURCE_GROUP)
    return _unmarked(waypoint_type)


def resolve_active_waypoints(
    waypoints: Iterable[MarkedWaypoint],
    user_id: int,
    is_owner: bool,
) -> Dict[str, ActiveWaypoint]:
    waypoints = list(waypoints)
    return {t: resolve_active_waypoint(waypoints, user_id, t, is_owner) for t in WAYPOINT_TYPES}


def get_active_waypoint(
    db: Session,
    connection_id: int,
    user_id: int,
    waypoint_type: str,
    is_owner: bool,
) -> ActiveWaypoint:
    waypoint_type = waypoint_crud.validate_type(waypoint_type)
    waypoints = waypoint_crud.list_waypoints(db, connection_id)
    return resolve_active_waypoint(waypoints, user_id, waypoint_type, is_owner)


def get_active_waypoints(db: Session, connection_id: int, user_id: int, is_owner: bool) -> Dict[str, ActiveWaypoint]:
    """{bus_station: ..., hotel: ...} for one viewer."""
    return resolve_active_waypoints(waypoint_crud.list_waypoints(db, connection_id), user_id, is_owner)
