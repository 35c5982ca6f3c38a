# Marked waypoint CRUD: personal / group marks (delete-then-insert keeps one per scope)

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from app.errors import AuthorizationError, NotFoundError, ValidationError
from app.models.waypoint import WAYPOINT_TYPES, MarkedWaypoint, WaypointScope, WaypointType
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

MAX_MARK_IMAGES = int(os.getenv("MAX_MARK_IMAGES", "1"))
MAX_UPDATE_IMAGES = 2
NAME_MAX_LENGTH = 100
COMMENT_MAX_LENGTH = 500


@dataclass
class WaypointFields:
    """User-supplied fields of a mark."""

    name: str
    latitude: float
    longitude: float
    comment: str
    distance: float = 0.0
    room_number: Optional[str] = None
    images: List[str] = field(default_factory=list)

    def validate(self) -> None:
        """ValidationError on missing/out-of-range values (checked before any mutation)."""
        if not self.name or not self.name.strip():
            raise ValidationError("Missing required field: name")
        if len(self.name) > NAME_MAX_LENGTH:
            raise ValidationError(f"name must be at most {NAME_MAX_LENGTH} characters")
        if not self.comment or not self.comment.strip():
            raise ValidationError("Missing required field: comment")
        if len(self.comment) > COMMENT_MAX_LENGTH:
            raise ValidationError(f"comment must be at most {COMMENT_MAX_LENGTH} characters")
        validate_coordinates(self.latitude, self.longitude)
        if len(self.images) > MAX_MARK_IMAGES:
            raise ValidationError(f"Maximum {MAX_MARK_IMAGES} image allowed")


def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    if latitude is None or longitude is None:
        raise ValidationError("Latitude and longitude are required")
    if not -90 <= latitude <= 90:
        raise ValidationError("Latitude must be between -90 and 90")
    if not -180 <= longitude <= 180:
        raise ValidationError("Longitude must be between -180 and 180")


def validate_type(waypoint_type: str) -> str:
    """Normalize to the plain string value, ValidationError for anything else."""
    try:
        return WaypointType(waypoint_type).value
    except ValueError:
        raise ValidationError(
            f"Unknown waypoint type {waypoint_type!r}; expected one of {', '.join(WAYPOINT_TYPES)}"
        ) from None


def list_waypoints(db: Session, connection_id: int) -> List[MarkedWaypoint]:
    return (
        db.query(MarkedWaypoint)
        .filter(MarkedWaypoint.connection_id == connection_id)
        .order_by(MarkedWaypoint.id)
        .all()
    )


def get_waypoint(db: Session, waypoint_id: int) -> MarkedWaypoint:
    waypoint = db.query(MarkedWaypoint).filter(MarkedWaypoint.id == waypoint_id).first()
    if waypoint is None:
        raise NotFoundError("Location not found")
    return waypoint


def find_personal_waypoint(db: Session, connection_id: int, user_id: int, waypoint_type: str) -> Optional[MarkedWaypoint]:
    return (
        db.query(MarkedWaypoint)
        .filter(
            MarkedWaypoint.connection_id == connection_id,
            MarkedWaypoint.type == waypoint_type,
            MarkedWaypoint.scope == WaypointScope.PERSONAL.value,
            MarkedWaypoint.scope_user_id == user_id,
        )
        .first()
    )


def find_group_waypoint(db: Session, connection_id: int, waypoint_type: str) -> Optional[MarkedWaypoint]:
    return (
        db.query(MarkedWaypoint)
        .filter(
            MarkedWaypoint.connection_id == connection_id,
            MarkedWaypoint.type == waypoint_type,
            MarkedWaypoint.scope == WaypointScope.GROUP.value,
        )
        .first()
    )


def delete_personal_waypoint(db: Session, connection_id: int, user_id: int, waypoint_type: str) -> int:
    return (
        db.query(MarkedWaypoint)
        .filter(
            MarkedWaypoint.connection_id == connection_id,
            MarkedWaypoint.type == waypoint_type,
            MarkedWaypoint.scope == WaypointScope.PERSONAL.value,
            MarkedWaypoint.scope_user_id == user_id,
        )
        .delete(synchronize_session="fetch")
    )


def delete_group_waypoint(db: Session, connection_id: int, waypoint_type: str) -> int:
    return (
        db.query(MarkedWaypoint)
        .filter(
            MarkedWaypoint.connection_id == connection_id,
            MarkedWaypoint.type == waypoint_type,
            MarkedWaypoint.scope == WaypointScope.GROUP.value,
        )
        .delete(synchronize_session="fetch")
    )


def _new_waypoint(
    connection_id: int,
    user_id: int,
    waypoint_type: str,
    scope: WaypointScope,
    fields: WaypointFields,
) -> MarkedWaypoint:
    now = utcnow()
    return MarkedWaypoint(
        connection_id=connection_id,
        type=waypoint_type,
        scope=scope.value,
        scope_user_id=user_id if scope is WaypointScope.PERSONAL else None,
        name=fields.name.strip(),
        latitude=float(fields.latitude),
        longitude=float(fields.longitude),
        comment=fields.comment,
        distance=float(fields.distance or 0.0),
        room_number=fields.room_number,
        images=list(fields.images),
        marked_by=user_id,
        is_owner_marked=scope is WaypointScope.GROUP,
        marked_at=now,
        updated_at=now,
    )


def mark_personal(
    db: Session,
    connection_id: int,
    user_id: int,
    waypoint_type: str,
    fields: WaypointFields,
) -> MarkedWaypoint:
    """
    Replace the user's personal mark of this type.

    The old row is deleted (and flushed) before the insert so the partial
    unique index never sees two. No commit.
    """
    waypoint_type = validate_type(waypoint_type)
    fields.validate()

    delete_personal_waypoint(db, connection_id, user_id, waypoint_type)
    waypoint = _new_waypoint(connection_id, user_id, waypoint_type, WaypointScope.PERSONAL, fields)
    db.add(waypoint)
    db.flush()

    logger.info("Marked personal %s for user %s in connection %s", waypoint_type, user_id, connection_id)
    return waypoint


def mark_group(
    db: Session,
    connection_id: int,
    user_id: int,
    waypoint_type: str,
    fields: WaypointFields,
) -> MarkedWaypoint:
    """
    Replace the connection's group mark of this type.

    ⚠️ The caller must have checked that user_id owns the connection. No commit.
    """
    waypoint_type = validate_type(waypoint_type)
    fields.validate()

    delete_group_waypoint(db, connection_id, waypoint_type)
    waypoint = _new_waypoint(connection_id, user_id, waypoint_type, WaypointScope.GROUP, fields)
    db.add(waypoint)
    db.flush()

    logger.info("Marked group %s by owner %s in connection %s", waypoint_type, user_id, connection_id)
    return waypoint


def update_waypoint(
    db: Session,
    waypoint_id: int,
    comment: Optional[str] = None,
    images: Optional[List[str]] = None,
) -> MarkedWaypoint:
    """Edit comment / images of an existing mark. None leaves a field unchanged. No commit."""
    waypoint = get_waypoint(db, waypoint_id)

    if comment is not None:
        if len(comment) > COMMENT_MAX_LENGTH:
            raise ValidationError(f"comment must be at most {COMMENT_MAX_LENGTH} characters")
        waypoint.comment = comment
    if images is not None:
        if len(images) > MAX_UPDATE_IMAGES:
            raise ValidationError(f"Maximum {MAX_UPDATE_IMAGES} images allowed")
        waypoint.images = list(images)

    waypoint.updated_at = utcnow()
    db.flush()
    return waypoint


def delete_waypoint(db: Session, waypoint_id: int, user_id: int) -> MarkedWaypoint:
    """Delete a mark. Only the user who marked it may delete it. No commit."""
    waypoint = get_waypoint(db, waypoint_id)
    if waypoint.marked_by != user_id:
        raise AuthorizationError("You can only delete locations you marked")

    db.delete(waypoint)
    db.flush()
    logger.info("Deleted %s %s mark %s by user %s", waypoint.scope, waypoint.type, waypoint_id, user_id)
    return waypoint
