# Durable location store: per-connection aggregate, per-member current state, bounded history

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.models.base import Base


class ConnectionLocation(Base):
    """Connection-level aggregate. One row per connection, created lazily on the first ping."""

    __tablename__ = "connection_locations"

    id = Column(Integer, primary_key=True, index=True)
    connection_id = Column(
        Integer, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    active_user_count = Column(Integer, nullable=False, default=0)  # members with online=True
    total_samples = Column(Integer, nullable=False, default=0)  # sum of member total_samples
    total_users = Column(Integer, nullable=False, default=0)  # active memberships
    last_activity = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MemberLocation(Base):
    """
    One member's state inside a connection: current sample + stats.

    Updated with SELECT ... FOR UPDATE on this row only, so concurrent pings
    from different members of the same connection never touch each other.
    """

    __tablename__ = "member_locations"

    id = Column(Integer, primary_key=True, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # current sample
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    floor = Column(String(20), nullable=True)
    accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    sampled_at = Column(DateTime(timezone=True), nullable=False)
    online = Column(Boolean, nullable=False, default=True)
    last_updated = Column(DateTime(timezone=True), nullable=False)

    # stats
    total_samples = Column(Integer, nullable=False, default=0)
    last_active = Column(DateTime(timezone=True), nullable=True)
    avg_speed = Column(Float, nullable=False, default=0.0)
    speed_samples = Column(Integer, nullable=False, default=0)  # samples that carried a speed
    total_distance = Column(Float, nullable=False, default=0.0)  # meters
    last_sequence = Column(BigInteger, nullable=True)  # highest client sequence applied (dedup)

    __table_args__ = (UniqueConstraint("connection_id", "user_id", name="uq_member_location"),)


class LocationHistory(Base):
    """Recent samples of a member, trimmed to LOCATION_HISTORY_LENGTH rows (oldest dropped)."""

    __tablename__ = "location_history"

    id = Column(Integer, primary_key=True, index=True)
    member_location_id = Column(
        Integer, ForeignKey("member_locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    floor = Column(String(20), nullable=True)
    accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False, index=True)
