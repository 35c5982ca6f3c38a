# LocationTracker: one object per process wiring cache + store + resolver + fan-out
# Routers call this; it owns commits for multi-step operations (mutation -> commit -> sync).

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crud import connection_crud, location_crud, waypoint_crud
from app.errors import AuthorizationError, BroadcastError, NotFoundError, StorageError, ValidationError
from app.models.location import ConnectionLocation, LocationHistory, MemberLocation
from app.models.user import User
from app.models.waypoint import MarkedWaypoint, WaypointScope
from app.realtime.sse_pubsub import (
    LOCATION_UPDATED,
    OWNERSHIP_TRANSFERRED,
    WAYPOINT_UPDATED,
    Publisher,
    connection_room,
)
from app.services import location_resolver, ownership_transfer
from app.services.cache_sync import CacheSyncBroadcaster, SyncReport
from app.services.location_cache import LocationCache, PositionSample
from app.services.location_resolver import ActiveWaypoint, LocationLookup
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationUpdateResult:
    sample: PositionSample
    persisted: bool
    duplicate: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class OfflineResult:
    user_id: int
    cached: bool
    connection_ids: List[int] = field(default_factory=list)
    persisted: bool = True
    error: Optional[str] = None


@dataclass(frozen=True)
class MemberLocationView:
    user_id: int
    name: str
    role: str
    location: Optional[LocationLookup]


@dataclass(frozen=True)
class ActiveWaypoints:
    connection_id: int
    user_id: int
    is_owner: bool
    bus_station: ActiveWaypoint
    hotel: ActiveWaypoint


@dataclass
class WaypointChange:
    waypoint: Optional[MarkedWaypoint]
    waypoint_id: int
    connection_id: int
    report: SyncReport


@dataclass
class TransferResult:
    connection_id: int
    new_owner_id: int
    outcomes: Dict[str, str]
    report: SyncReport


@dataclass
class ConnectionHistory:
    connection_id: int
    aggregate: Optional[ConnectionLocation]
    members: List[Tuple[MemberLocation, User, List[LocationHistory]]]


class LocationTracker:
    """
    External operations of the service.

    The cache is injected and owned by whoever creates the tracker (the app
    lifespan in production, the test fixtures otherwise).
    """

    def __init__(
        self,
        cache: LocationCache,
        publisher: Publisher,
        history_length: int = location_crud.HISTORY_LENGTH,
    ):
        self.cache = cache
        self.publisher = publisher
        self.history_length = history_length
        self.sync = CacheSyncBroadcaster(publisher)

    # ------------------------------------------------------------------ helpers

    def _commit(self, db: Session) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Commit failed")
            raise StorageError("Failed to persist changes") from exc

    async def _publish(self, event: str, room: str, payload: Dict[str, Any]) -> bool:
        """Best-effort publish: a broadcast failure never undoes a committed change."""
        try:
            await self.publisher.publish(event, room, payload)
        except BroadcastError as exc:
            logger.warning("Broadcast of %s to %s failed: %s", event, room, exc.message)
            return False
        return True

    # ---------------------------------------------------------------- locations

    async def update_location(
        self,
        db: Session,
        user_id: int,
        connection_id: int,
        latitude: float,
        longitude: float,
        floor: Optional[str] = None,
        accuracy: Optional[float] = None,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
        sequence: Optional[int] = None,
    ) -> LocationUpdateResult:
        """
        Ping path: cache first, then the store, then a location_updated event
        on the connection room.

        A store failure is rolled back and reported as persisted=False; the
        cache write stands.
        """
        waypoint_crud.validate_coordinates(latitude, longitude)
        connection_crud.get_user(db, user_id)
        connection_crud.get_connection(db, connection_id)
        connection_crud.require_active_member(db, connection_id, user_id)

        sample = PositionSample(
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            timestamp=self.cache.now(),
            online=True,
            floor=floor,
            accuracy=accuracy,
            speed=speed,
            heading=heading,
            sequence=sequence,
        )

        if self.cache.put_if_newer(user_id, sample) is None:
            # the cache may hold a sequence whose store write failed; only the store decides
            member = location_crud.get_member_location(db, connection_id, user_id)
            if member is not None and location_crud.is_duplicate_sample(member, sample):
                logger.info("Out-of-order sample seq=%s for user %s dropped", sequence, user_id)
                current = self.cache.get(user_id)
                return LocationUpdateResult(
                    sample=current.sample if current is not None else sample,
                    persisted=False,
                    duplicate=True,
                )
            logger.info("Sample seq=%s for user %s not yet persisted, retrying store write", sequence, user_id)

        try:
            _, applied = location_crud.upsert_member_sample(
                db, connection_id, user_id, sample, self.history_length
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Location persist failed for user %s in connection %s: %s", user_id, connection_id, exc)
            return LocationUpdateResult(sample=sample, persisted=False, error=str(exc))

        if applied:
            await self._publish(
                LOCATION_UPDATED,
                connection_room(connection_id),
                {"connection_id": connection_id, **sample.to_dict()},
            )
        return LocationUpdateResult(sample=sample, persisted=applied, duplicate=not applied)

    async def mark_offline(self, db: Session, user_id: int) -> OfflineResult:
        """
        Explicit disconnect. Flips online in the cache entry and the store; never evicts.

        A store failure is rolled back and reported as persisted=False; the
        cache change stands.
        """
        connection_crud.get_user(db, user_id)

        entry = self.cache.mark_offline(user_id)
        try:
            members = location_crud.mark_member_offline(db, user_id)
            connection_ids = sorted({m.connection_id for m in members})
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Offline persist failed for user %s: %s", user_id, exc)
            return OfflineResult(user_id=user_id, cached=entry is not None, persisted=False, error=str(exc))

        for connection_id in connection_ids:
            await self._publish(
                LOCATION_UPDATED,
                connection_room(connection_id),
                {"connection_id": connection_id, "user_id": user_id, "online": False},
            )
        logger.info("User %s marked offline in %d connection(s)", user_id, len(connection_ids))
        return OfflineResult(user_id=user_id, cached=entry is not None, connection_ids=connection_ids)

    def get_user_location(self, db: Session, user_id: int) -> LocationLookup:
        lookup = location_resolver.get_user_location_with_fallback(db, self.cache, user_id)
        if lookup is None:
            raise NotFoundError("Location not found")
        return lookup

    def get_group_locations(
        self,
        db: Session,
        connection_id: int,
        requester_id: Optional[int] = None,
    ) -> List[MemberLocationView]:
        """Every active member with their hybrid-read location (None if never seen)."""
        connection_crud.get_connection(db, connection_id)
        if requester_id is not None:
            connection_crud.require_active_member(db, connection_id, requester_id)

        views = []
        for membership, user in connection_crud.list_active_members(db, connection_id):
            views.append(
                MemberLocationView(
                    user_id=user.id,
                    name=user.name,
                    role=membership.role,
                    location=location_resolver.get_user_location_with_fallback(db, self.cache, user.id),
                )
            )
        return views

    def get_memory_status(self) -> Dict[str, Any]:
        return self.cache.status()

    def get_connection_history(
        self,
        db: Session,
        connection_id: int,
        hours: Optional[float] = None,
    ) -> ConnectionHistory:
        connection_crud.get_connection(db, connection_id)
        if hours is not None and hours <= 0:
            raise ValidationError("hours must be positive")
        since = utcnow() - timedelta(hours=hours) if hours else None
        return ConnectionHistory(
            connection_id=connection_id,
            aggregate=location_crud.get_connection_location(db, connection_id),
            members=location_crud.get_connection_history(db, connection_id, since),
        )

    def cleanup_history(self, db: Session, keep: Optional[int] = None) -> int:
        keep = self.history_length if keep is None else keep
        if keep < 1:
            raise ValidationError("keep must be at least 1")
        trimmed = location_crud.trim_all_history(db, keep)
        self._commit(db)
        logger.info("History cleanup trimmed %d member(s) to %d point(s)", trimmed, keep)
        return trimmed

    # ---------------------------------------------------------------- waypoints

    async def mark_waypoint(
        self,
        db: Session,
        connection_id: int,
        user_id: int,
        waypoint_type: str,
        scope: str,
        fields: waypoint_crud.WaypointFields,
    ) -> WaypointChange:
        """
        Personal marks are open to any active member; group marks need the
        owner role. Ownership comes from the membership row, never from input.
        """
        connection_crud.get_connection(db, connection_id)
        membership = connection_crud.require_active_member(db, connection_id, user_id)
        try:
            scope = WaypointScope(scope)
        except ValueError:
            raise ValidationError(f"Unknown scope {scope!r}; expected personal or group") from None

        if scope is WaypointScope.GROUP:
            if not connection_crud.is_owner(membership):
                raise AuthorizationError("Only connection owner can mark group locations")
            waypoint = waypoint_crud.mark_group(db, connection_id, user_id, waypoint_type, fields)
        else:
            waypoint = waypoint_crud.mark_personal(db, connection_id, user_id, waypoint_type, fields)
        self._commit(db)

        waypoint_id = waypoint.id
        report = await self.sync.sync_and_broadcast(db, connection_id)
        return WaypointChange(waypoint=waypoint, waypoint_id=waypoint_id, connection_id=connection_id, report=report)

    def get_active_waypoints(
        self,
        db: Session,
        connection_id: int,
        user_id: int,
        is_owner: Optional[bool] = None,
    ) -> ActiveWaypoints:
        """Both types for one viewer. is_owner defaults to the viewer's membership role."""
        connection_crud.get_connection(db, connection_id)
        membership = connection_crud.require_active_member(db, connection_id, user_id)
        if is_owner is None:
            is_owner = connection_crud.is_owner(membership)
        resolved = location_resolver.get_active_waypoints(db, connection_id, user_id, is_owner)
        return ActiveWaypoints(
            connection_id=connection_id,
            user_id=user_id,
            is_owner=is_owner,
            bus_station=resolved["bus_station"],
            hotel=resolved["hotel"],
        )

    def list_waypoints(self, db: Session, connection_id: int) -> List[MarkedWaypoint]:
        connection_crud.get_connection(db, connection_id)
        return waypoint_crud.list_waypoints(db, connection_id)

    async def update_waypoint(
        self,
        db: Session,
        waypoint_id: int,
        comment: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> WaypointChange:
        waypoint = waypoint_crud.update_waypoint(db, waypoint_id, comment=comment, images=images)
        connection_id = waypoint.connection_id
        payload = {
            "connection_id": connection_id,
            "waypoint_id": waypoint_id,
            "waypoint_type": waypoint.type,
            "scope": waypoint.scope,
            "comment": waypoint.comment,
            "images": list(waypoint.images or []),
        }
        self._commit(db)

        await self._publish(WAYPOINT_UPDATED, connection_room(connection_id), payload)
        report = await self.sync.sync_and_broadcast(db, connection_id)
        return WaypointChange(waypoint=waypoint, waypoint_id=waypoint_id, connection_id=connection_id, report=report)

    async def delete_waypoint(self, db: Session, waypoint_id: int, user_id: int) -> WaypointChange:
        waypoint = waypoint_crud.delete_waypoint(db, waypoint_id, user_id)
        connection_id = waypoint.connection_id
        self._commit(db)

        report = await self.sync.sync_and_broadcast(db, connection_id)
        return WaypointChange(waypoint=None, waypoint_id=waypoint_id, connection_id=connection_id, report=report)

    # ---------------------------------------------------------------- ownership

    async def transfer_ownership(
        self,
        db: Session,
        connection_id: int,
        current_owner_id: int,
        new_owner_id: int,
        choices: Optional[Mapping[str, object]] = None,
    ) -> TransferResult:
        """Marks + role swap commit together; the member snapshots follow via sync."""
        outcomes = ownership_transfer.transfer_ownership(
            db, connection_id, current_owner_id, new_owner_id, choices
        )
        self._commit(db)

        await self._publish(
            OWNERSHIP_TRANSFERRED,
            connection_room(connection_id),
            {
                "connection_id": connection_id,
                "previous_owner_id": current_owner_id,
                "new_owner_id": new_owner_id,
                "outcomes": outcomes,
            },
        )
        report = await self.sync.sync_and_broadcast(db, connection_id)
        return TransferResult(
            connection_id=connection_id,
            new_owner_id=new_owner_id,
            outcomes=outcomes,
            report=report,
        )
