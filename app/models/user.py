# User model (identity) + denormalized active waypoint snapshot

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.models.base import Base


class User(Base):
    """
    Users table.

    active_bus_station / active_hotel are written by the cache sync step so
    other readers (chat UI etc.) get the resolved waypoint without re-running
    the priority logic. Shape: {name, latitude, longitude, source, is_marked,
    waypoint_id, connection_id, room_number, last_updated}.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    active_bus_station = Column(JSON, nullable=True)
    active_hotel = Column(JSON, nullable=True)
