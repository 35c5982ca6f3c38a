# Ownership transfer: per-type waypoint conflict policy + role swap

import logging
from enum import Enum as PyEnum
from typing import Dict, Mapping, Optional

from sqlalchemy.orm import Session

from app.crud import connection_crud, waypoint_crud
from app.errors import AuthorizationError, NotFoundError, ValidationError
from app.models.connection import MemberRole
from app.models.waypoint import WAYPOINT_TYPES, WaypointScope
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class TransferPolicy(str, PyEnum):
    USE_PERSONAL_AS_GROUP = "use_personal_as_group"
    KEEP_PREVIOUS_AS_GROUP = "keep_previous_as_group"


DEFAULT_POLICY = TransferPolicy.KEEP_PREVIOUS_AS_GROUP

# outcomes reported per type
CONVERTED = "converted"
UNCHANGED = "unchanged"
KEPT = "kept"


def use_personal_as_group(db: Session, connection_id: int, new_owner_id: int, waypoint_type: str) -> str:
    """
    Promote the new owner's personal mark to the group mark.

    Without a personal mark this does nothing: the old group mark stays as it
    was. Whether it should fall back to keep_previous_as_group is an open
    product question, so it is deliberately not guessed here.
    """
    personal = waypoint_crud.find_personal_waypoint(db, connection_id, new_owner_id, waypoint_type)
    if personal is None:
        logger.info(
            "use_personal_as_group: user %s has no personal %s in connection %s, group mark left unchanged",
            new_owner_id,
            waypoint_type,
            connection_id,
        )
        return UNCHANGED

    # old group row must be gone before the personal row takes its scope
    waypoint_crud.delete_group_waypoint(db, connection_id, waypoint_type)
    personal.scope = WaypointScope.GROUP.value
    personal.scope_user_id = None
    personal.marked_by = new_owner_id
    personal.is_owner_marked = True
    personal.updated_at = utcnow()
    db.flush()
    return CONVERTED


def keep_previous_as_group(db: Session, connection_id: int, new_owner_id: int, waypoint_type: str) -> str:
    """
    Keep the current group mark, now attributed to the new owner. The new
    owner's personal mark is removed: as owner they only ever see the group one.
    """
    waypoint_crud.delete_personal_waypoint(db, connection_id, new_owner_id, waypoint_type)

    group = waypoint_crud.find_group_waypoint(db, connection_id, waypoint_type)
    if group is not None:
        group.marked_by = new_owner_id
        group.updated_at = utcnow()
    db.flush()
    return KEPT


_POLICIES = {
    TransferPolicy.USE_PERSONAL_AS_GROUP: use_personal_as_group,
    TransferPolicy.KEEP_PREVIOUS_AS_GROUP: keep_previous_as_group,
}


def _policy_for(choices: Optional[Mapping[str, object]], waypoint_type: str) -> TransferPolicy:
    raw = (choices or {}).get(waypoint_type)
    if raw is None:
        return DEFAULT_POLICY
    try:
        return TransferPolicy(raw)
    except ValueError:
        raise ValidationError(f"Unknown transfer policy {raw!r} for {waypoint_type}") from None


def transfer_ownership(
    db: Session,
    connection_id: int,
    current_owner_id: int,
    new_owner_id: int,
    choices: Optional[Mapping[str, object]] = None,
) -> Dict[str, str]:
    """
    Apply the per-type policy for bus_station and hotel, then swap roles.

    All checks run before any mutation:
    - unknown connection -> NotFoundError
    - current_owner_id not the active owner -> AuthorizationError
    - new_owner_id not an active member -> NotFoundError
    - same user -> ValidationError

    Returns {type: outcome}. No commit: marks and roles land in one transaction.
    """
    connection_crud.get_connection(db, connection_id)
    if current_owner_id == new_owner_id:
        raise ValidationError("New owner must be a different user")

    current = connection_crud.get_active_membership(db, connection_id, current_owner_id)
    if current is None or not connection_crud.is_owner(current):
        raise AuthorizationError("Only current owner can transfer ownership")

    new_owner = connection_crud.get_active_membership(db, connection_id, new_owner_id)
    if new_owner is None:
        raise NotFoundError("New owner is not a member of this connection")

    policies = {t: _policy_for(choices, t) for t in WAYPOINT_TYPES}

    outcomes: Dict[str, str] = {}
    for waypoint_type, policy in policies.items():
        outcomes[waypoint_type] = _POLICIES[policy](db, connection_id, new_owner_id, waypoint_type)

    current.role = MemberRole.MEMBER.value
    new_owner.role = MemberRole.OWNER.value
    db.flush()

    logger.info(
        "Ownership of connection %s transferred %s -> %s (%s)", connection_id, current_owner_id, new_owner_id, outcomes
    )
    return outcomes
