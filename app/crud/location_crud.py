# Durable location store CRUD (per-connection aggregate, member state, bounded history)
import logging
import math
import os
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.crud.connection_crud import count_active_members
from app.models.connection import ConnectionMember, MemberStatus
from app.models.location import ConnectionLocation, LocationHistory, MemberLocation
from app.models.user import User
from app.services.location_cache import PositionSample
from app.utils.timeutils import dt_from_epoch, epoch_from_dt, utcnow

logger = logging.getLogger(__name__)

HISTORY_LENGTH = int(os.getenv("LOCATION_HISTORY_LENGTH", "5"))


def _haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Approximate distance in meters between two lat/lng points."""
    R = 6371000  # earth radius m
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def member_to_sample(member: MemberLocation) -> PositionSample:
    """Current sample of a member row as a PositionSample."""
    return PositionSample(
        user_id=member.user_id,
        latitude=member.latitude,
        longitude=member.longitude,
        timestamp=epoch_from_dt(member.sampled_at),
        online=bool(member.online),
        floor=member.floor,
        accuracy=member.accuracy,
        speed=member.speed,
        heading=member.heading,
        sequence=member.last_sequence,
    )


def ensure_connection_location(db: Session, connection_id: int) -> ConnectionLocation:
    """
    Idempotent create of the connection aggregate.

    A concurrent creator losing the unique(connection_id) race re-reads the
    winner's row instead of failing. No commit (caller owns the transaction).
    """
    aggregate = db.query(ConnectionLocation).filter(ConnectionLocation.connection_id == connection_id).first()
    if aggregate is not None:
        return aggregate

    aggregate = ConnectionLocation(
        connection_id=connection_id,
        active_user_count=0,
        total_samples=0,
        total_users=count_active_members(db, connection_id),
        last_activity=utcnow(),
    )
    try:
        with db.begin_nested():
            db.add(aggregate)
    except IntegrityError:
        logger.debug("Connection location for %s created concurrently, re-reading", connection_id)
        aggregate = db.query(ConnectionLocation).filter(ConnectionLocation.connection_id == connection_id).one()
    return aggregate


def _lock_member(db: Session, connection_id: int, user_id: int) -> Optional[MemberLocation]:
    return (
        db.query(MemberLocation)
        .filter(
            MemberLocation.connection_id == connection_id,
            MemberLocation.user_id == user_id,
        )
        .with_for_update()
        .first()
    )


def _append_history(db: Session, member: MemberLocation, sample: PositionSample, keep: int) -> None:
    db.add(
        LocationHistory(
            member_location_id=member.id,
            latitude=sample.latitude,
            longitude=sample.longitude,
            floor=sample.floor,
            accuracy=sample.accuracy,
            speed=sample.speed,
            heading=sample.heading,
            recorded_at=dt_from_epoch(sample.timestamp),
        )
    )
    db.flush()
    _trim_history(db, member.id, keep)


def _trim_history(db: Session, member_location_id: int, keep: int) -> int:
    """Drop everything but the newest `keep` rows (insertion order). Returns rows removed."""
    stale_ids = [
        row.id
        for row in db.query(LocationHistory.id)
        .filter(LocationHistory.member_location_id == member_location_id)
        .order_by(LocationHistory.id.desc())
        .offset(max(0, keep))
        .all()
    ]
    if not stale_ids:
        return 0
    db.query(LocationHistory).filter(LocationHistory.id.in_(stale_ids)).delete(synchronize_session=False)
    return len(stale_ids)


def _new_member(connection_id: int, user_id: int, sample: PositionSample, now: datetime) -> MemberLocation:
    return MemberLocation(
        connection_id=connection_id,
        user_id=user_id,
        latitude=sample.latitude,
        longitude=sample.longitude,
        floor=sample.floor,
        accuracy=sample.accuracy,
        speed=sample.speed,
        heading=sample.heading,
        sampled_at=dt_from_epoch(sample.timestamp),
        online=sample.online,
        last_updated=now,
        total_samples=1,
        last_active=now,
        avg_speed=sample.speed or 0.0,
        speed_samples=1 if sample.speed is not None else 0,
        total_distance=0.0,
        last_sequence=sample.sequence,
    )


def _apply_sample(member: MemberLocation, sample: PositionSample, now: datetime) -> None:
    """Move current -> sample and roll the stats forward."""
    member.total_distance = (member.total_distance or 0.0) + _haversine_m(
        member.latitude, member.longitude, sample.latitude, sample.longitude
    )
    if sample.speed is not None:
        n = (member.speed_samples or 0) + 1
        member.avg_speed = (member.avg_speed or 0.0) + (sample.speed - (member.avg_speed or 0.0)) / n
        member.speed_samples = n

    member.latitude = sample.latitude
    member.longitude = sample.longitude
    member.floor = sample.floor
    member.accuracy = sample.accuracy
    member.speed = sample.speed
    member.heading = sample.heading
    member.sampled_at = dt_from_epoch(sample.timestamp)
    member.online = sample.online
    member.last_updated = now
    member.total_samples = (member.total_samples or 0) + 1
    member.last_active = now
    if sample.sequence is not None:
        member.last_sequence = sample.sequence


def is_duplicate_sample(member: MemberLocation, sample: PositionSample) -> bool:
    """
    Retried write detection. Only samples carrying a client sequence can be
    recognised; without one every write counts (best effort).
    """
    if sample.sequence is None or member.last_sequence is None:
        return False
    return sample.sequence <= member.last_sequence


def upsert_member_sample(
    db: Session,
    connection_id: int,
    user_id: int,
    sample: PositionSample,
    history_length: int = HISTORY_LENGTH,
) -> Tuple[MemberLocation, bool]:
    """
    Write one sample into the member's state.

    - New member: insert with history=[sample] and stats seeded from it.
    - Existing member: current=sample, history append (trimmed to
      history_length), total_samples+1, last_active=now, avg speed/distance.
    - Recognised duplicate (sequence already applied): no change.
    - Connection stats recomputed after every applied write.

    Returns (member, applied). No commit.
    """
    now = utcnow()
    aggregate = ensure_connection_location(db, connection_id)

    member = _lock_member(db, connection_id, user_id)
    if member is None:
        created = _new_member(connection_id, user_id, sample, now)
        try:
            with db.begin_nested():
                db.add(created)
        except IntegrityError:
            # another ping of the same user inserted first; update theirs instead
            member = _lock_member(db, connection_id, user_id)
        else:
            member = created
            _append_history(db, member, sample, history_length)
            aggregate.last_activity = now
            recalculate_connection_stats(db, connection_id)
            return member, True

    if is_duplicate_sample(member, sample):
        logger.info(
            "Duplicate sample seq=%s for user %s in connection %s ignored",
            sample.sequence,
            user_id,
            connection_id,
        )
        return member, False

    _apply_sample(member, sample, now)
    _append_history(db, member, sample, history_length)
    aggregate.last_activity = now
    recalculate_connection_stats(db, connection_id)
    return member, True


def recalculate_connection_stats(db: Session, connection_id: int) -> Optional[ConnectionLocation]:
    """activeUserCount = members online, totalSamples = sum over members. No commit."""
    aggregate = db.query(ConnectionLocation).filter(ConnectionLocation.connection_id == connection_id).first()
    if aggregate is None:
        return None

    db.flush()
    active = (
        db.query(func.count(MemberLocation.id))
        .filter(MemberLocation.connection_id == connection_id, MemberLocation.online.is_(True))
        .scalar()
    )
    total = (
        db.query(func.coalesce(func.sum(MemberLocation.total_samples), 0))
        .filter(MemberLocation.connection_id == connection_id)
        .scalar()
    )
    aggregate.active_user_count = int(active or 0)
    aggregate.total_samples = int(total or 0)
    aggregate.total_users = count_active_members(db, connection_id)
    return aggregate


def mark_member_offline(db: Session, user_id: int) -> List[MemberLocation]:
    """
    online=False on the user's current sample in every connection they are an
    active member of, then recompute those connections' stats. No commit.
    """
    now = utcnow()
    members = (
        db.query(MemberLocation)
        .join(
            ConnectionMember,
            (ConnectionMember.connection_id == MemberLocation.connection_id)
            & (ConnectionMember.user_id == MemberLocation.user_id),
        )
        .filter(
            MemberLocation.user_id == user_id,
            ConnectionMember.status == MemberStatus.ACTIVE.value,
        )
        .with_for_update(of=MemberLocation)
        .all()
    )
    for member in members:
        member.online = False
        member.last_updated = now
        member.last_active = now
    for connection_id in {m.connection_id for m in members}:
        recalculate_connection_stats(db, connection_id)
    return members


def get_member_location(db: Session, connection_id: int, user_id: int) -> Optional[MemberLocation]:
    return (
        db.query(MemberLocation)
        .filter(MemberLocation.connection_id == connection_id, MemberLocation.user_id == user_id)
        .first()
    )


def get_latest_member_location(db: Session, user_id: int) -> Optional[MemberLocation]:
    """The user's most recently updated state across all connections."""
    return (
        db.query(MemberLocation)
        .filter(MemberLocation.user_id == user_id)
        .order_by(MemberLocation.last_updated.desc(), MemberLocation.id.desc())
        .first()
    )


def get_connection_location(db: Session, connection_id: int) -> Optional[ConnectionLocation]:
    return db.query(ConnectionLocation).filter(ConnectionLocation.connection_id == connection_id).first()


def get_connection_history(
    db: Session,
    connection_id: int,
    since: Optional[datetime] = None,
) -> List[Tuple[MemberLocation, User, List[LocationHistory]]]:
    """Each member's state, user and history (optionally only points recorded at/after `since`)."""
    rows = (
        db.query(MemberLocation, User)
        .join(User, User.id == MemberLocation.user_id)
        .filter(MemberLocation.connection_id == connection_id)
        .order_by(MemberLocation.id)
        .all()
    )
    result = []
    for member, user in rows:
        q = db.query(LocationHistory).filter(LocationHistory.member_location_id == member.id)
        if since is not None:
            q = q.filter(LocationHistory.recorded_at >= since)
        result.append((member, user, q.order_by(LocationHistory.id).all()))
    return result


def trim_all_history(db: Session, keep: int = HISTORY_LENGTH) -> int:
    """Maintenance pass: trim every member's history to `keep`. Returns members trimmed. No commit."""
    trimmed = 0
    for (member_id,) in db.query(MemberLocation.id).all():
        if _trim_history(db, member_id, keep):
            trimmed += 1
    return trimmed
