# Connection / membership lookups (identity + role-in-connection)

from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.errors import AuthorizationError, NotFoundError
from app.models.connection import Connection, ConnectionMember, MemberRole, MemberStatus
from app.models.user import User


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_connection(db: Session, connection_id: int) -> Connection:
    connection = db.query(Connection).filter(Connection.id == connection_id).first()
    if connection is None:
        raise NotFoundError("Connection not found")
    return connection


def get_active_membership(db: Session, connection_id: int, user_id: int) -> Optional[ConnectionMember]:
    return (
        db.query(ConnectionMember)
        .filter(
            ConnectionMember.connection_id == connection_id,
            ConnectionMember.user_id == user_id,
            ConnectionMember.status == MemberStatus.ACTIVE.value,
        )
        .first()
    )


def require_active_member(db: Session, connection_id: int, user_id: int) -> ConnectionMember:
    """Active membership or AuthorizationError (user not part of this connection)."""
    membership = get_active_membership(db, connection_id, user_id)
    if membership is None:
        raise AuthorizationError("User not found in connection")
    return membership


def is_owner(membership: ConnectionMember) -> bool:
    return membership.role == MemberRole.OWNER.value


def list_active_members(db: Session, connection_id: int) -> List[Tuple[ConnectionMember, User]]:
    """Active memberships with their users, in join order."""
    return (
        db.query(ConnectionMember, User)
        .join(User, User.id == ConnectionMember.user_id)
        .filter(
            ConnectionMember.connection_id == connection_id,
            ConnectionMember.status == MemberStatus.ACTIVE.value,
        )
        .order_by(ConnectionMember.joined_at, ConnectionMember.id)
        .all()
    )


def count_active_members(db: Session, connection_id: int) -> int:
    return (
        db.query(ConnectionMember)
        .filter(
            ConnectionMember.connection_id == connection_id,
            ConnectionMember.status == MemberStatus.ACTIVE.value,
        )
        .count()
    )
