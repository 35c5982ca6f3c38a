# Cache sync: recompute each member's active waypoints, write the per-user snapshot, fan out

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crud import connection_crud, waypoint_crud
from app.errors import BroadcastError
from app.models.user import User
from app.realtime.sse_pubsub import ACTIVE_WAYPOINTS_UPDATED, Publisher, user_room
from app.services.location_resolver import ActiveWaypoint, resolve_active_waypoints
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Per-member outcome of one sync. Members are independent; there is no all-or-nothing."""

    connection_id: int
    synced: Dict[int, Dict[str, ActiveWaypoint]] = field(default_factory=dict)
    failed: Dict[int, str] = field(default_factory=dict)
    broadcast_failed: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.broadcast_failed


class CacheSyncBroadcaster:
    """
    After any waypoint or ownership mutation:

    1. sync_all: for every active member resolve bus_station + hotel and
       write them into users.active_bus_station / users.active_hotel. Each
       member is committed on its own; a failure is rolled back, logged and
       recorded, and the loop moves on.
    2. broadcast: publish active_waypoints_updated to each synced member's
       room, collecting per-member publish failures the same way.

    A partially failed sync leaves those members' snapshots stale until the
    next mutation triggers another sync.
    """

    def __init__(self, publisher: Publisher):
        self.publisher = publisher

    def sync_all(self, db: Session, connection_id: int) -> SyncReport:
        """
        ⚠️ Commits per member. Call only after the triggering mutation has
        been committed.
        """
        report = SyncReport(connection_id=connection_id)
        waypoints = waypoint_crud.list_waypoints(db, connection_id)

        # resolve everything before writing: a rollback expires loaded rows
        plan: List[Tuple[int, Dict[str, ActiveWaypoint]]] = []
        for membership, user in connection_crud.list_active_members(db, connection_id):
            resolutions = resolve_active_waypoints(waypoints, user.id, connection_crud.is_owner(membership))
            plan.append((user.id, resolutions))

        for user_id, resolutions in plan:
            try:
                self._write_snapshot(db, connection_id, user_id, resolutions)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning(
                    "Snapshot sync failed for user %s in connection %s: %s", user_id, connection_id, exc
                )
                report.failed[user_id] = str(exc)
                continue
            report.synced[user_id] = resolutions

        logger.info(
            "Synced active waypoints for connection %s: %d ok, %d failed",
            connection_id,
            len(report.synced),
            len(report.failed),
        )
        return report

    def _write_snapshot(
        self,
        db: Session,
        connection_id: int,
        user_id: int,
        resolutions: Dict[str, ActiveWaypoint],
    ) -> None:
        now = utcnow()
        db.query(User).filter(User.id == user_id).update(
            {
                User.active_bus_station: resolutions["bus_station"].to_snapshot(connection_id, now),
                User.active_hotel: resolutions["hotel"].to_snapshot(connection_id, now),
            },
            synchronize_session=False,
        )

    async def broadcast(self, report: SyncReport) -> SyncReport:
        for user_id, resolutions in report.synced.items():
            payload = {
                "connection_id": report.connection_id,
                "user_id": user_id,
                "bus_station": _public(resolutions["bus_station"]),
                "hotel": _public(resolutions["hotel"]),
            }
            try:
                await self.publisher.publish(ACTIVE_WAYPOINTS_UPDATED, user_room(user_id), payload)
            except BroadcastError as exc:
                logger.warning("Active waypoint broadcast to user %s failed: %s", user_id, exc.message)
                report.broadcast_failed[user_id] = exc.message
        return report

    async def sync_and_broadcast(self, db: Session, connection_id: int) -> SyncReport:
        return await self.broadcast(self.sync_all(db, connection_id))


def _public(active: ActiveWaypoint) -> Dict[str, object]:
    return {
        "type": active.type,
        "source": active.source,
        "is_marked": active.is_marked,
        "waypoint_id": active.waypoint_id,
        "name": active.name,
        "latitude": active.latitude,
        "longitude": active.longitude,
        "room_number": active.room_number,
    }
