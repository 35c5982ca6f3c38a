# Connection (group) + membership models

from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from app.models.base import Base


class MemberRole(str, PyEnum):
    """Role inside a connection. Exactly one active owner per connection."""

    OWNER = "owner"
    MEMBER = "member"


class MemberStatus(str, PyEnum):
    ACTIVE = "active"
    LEFT = "left"


class Connection(Base):
    """A group of users sharing locations and waypoints."""

    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="active", server_default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ConnectionMember(Base):
    """Membership row. Stored as String(20); compare against MemberRole/MemberStatus values."""

    __tablename__ = "connection_members"

    id = Column(Integer, primary_key=True, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=MemberRole.MEMBER.value)
    status = Column(String(20), nullable=False, default=MemberStatus.ACTIVE.value)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("connection_id", "user_id", name="uq_connection_member"),)
