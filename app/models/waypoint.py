# Marked waypoint model: personal or group bus_station / hotel pins

from enum import Enum as PyEnum

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, text

from app.models.base import Base


class WaypointType(str, PyEnum):
    BUS_STATION = "bus_station"
    HOTEL = "hotel"


class WaypointScope(str, PyEnum):
    """personal: applies to scope_user_id only. group: applies to the whole connection."""

    PERSONAL = "personal"
    GROUP = "group"


WAYPOINT_TYPES = (WaypointType.BUS_STATION.value, WaypointType.HOTEL.value)


class MarkedWaypoint(Base):
    """
    A marked waypoint of a connection.

    At most one group mark per (connection, type) and one personal mark per
    (connection, type, user). Mutations delete-then-insert in one transaction;
    the partial unique indexes below reject anything that slips through.
    """

    __tablename__ = "marked_waypoints"

    id = Column(Integer, primary_key=True, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    scope = Column(String(20), nullable=False)
    scope_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)  # personal only
    name = Column(String(100), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    comment = Column(String(500), nullable=False, default="")
    distance = Column(Float, nullable=False, default=0.0)
    room_number = Column(String(20), nullable=True)  # hotel only
    images = Column(JSON, nullable=False, default=list)
    marked_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_owner_marked = Column(Boolean, nullable=False, default=False)
    marked_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index(
            "uq_marked_waypoints_group",
            "connection_id",
            "type",
            unique=True,
            postgresql_where=text("scope = 'group'"),
            sqlite_where=text("scope = 'group'"),
        ),
        Index(
            "uq_marked_waypoints_personal",
            "connection_id",
            "type",
            "scope_user_id",
            unique=True,
            postgresql_where=text("scope = 'personal'"),
            sqlite_where=text("scope = 'personal'"),
        ),
    )
