# Location API: pings, hybrid reads, offline, diagnostics, history
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import LocationError
from app.routers.deps import get_tracker
from app.schemas.location import (
    CleanupOut,
    ConnectionHistoryOut,
    ConnectionStatsOut,
    GroupLocationsOut,
    HistoryPointOut,
    LocationLookupOut,
    LocationUpdateBody,
    LocationUpdateOut,
    MemberHistoryOut,
    MemberLocationOut,
    MemoryStatusOut,
    OfflineBody,
    OfflineOut,
    PositionSampleOut,
)
from app.services.location_cache import PositionSample
from app.services.location_resolver import LocationLookup
from app.services.location_tracker import LocationTracker

router = APIRouter(prefix="/locations", tags=["Locations"])


def _sample_out(sample: PositionSample) -> PositionSampleOut:
    return PositionSampleOut(**sample.to_dict())


def _lookup_out(lookup: LocationLookup) -> LocationLookupOut:
    return LocationLookupOut(sample=_sample_out(lookup.sample), source=lookup.source, is_stale=lookup.is_stale)


@router.post("", response_model=LocationUpdateOut)
async def post_location(
    body: LocationUpdateBody,
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> LocationUpdateOut:
    """Location ping: cache + store + location_updated broadcast. persisted=false if the store write failed."""
    try:
        result = await tracker.update_location(
            db,
            user_id=body.user_id,
            connection_id=body.connection_id,
            latitude=body.latitude,
            longitude=body.longitude,
            floor=body.floor,
            accuracy=body.accuracy,
            speed=body.speed,
            heading=body.heading,
            sequence=body.sequence,
        )
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    return LocationUpdateOut(
        sample=_sample_out(result.sample),
        persisted=result.persisted,
        duplicate=result.duplicate,
        error=result.error,
    )


@router.post("/offline", response_model=OfflineOut)
async def post_offline(
    body: OfflineBody,
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> OfflineOut:
    """Explicit disconnect: online=false in cache and store. The cache entry is kept."""
    try:
        result = await tracker.mark_offline(db, body.user_id)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return OfflineOut(
        user_id=result.user_id,
        cached=result.cached,
        connection_ids=result.connection_ids,
        persisted=result.persisted,
        error=result.error,
    )


@router.get("/memory-status", response_model=MemoryStatusOut)
def get_memory_status(tracker: LocationTracker = Depends(get_tracker)) -> MemoryStatusOut:
    return MemoryStatusOut(**tracker.get_memory_status())


@router.get("/users/{user_id}", response_model=LocationLookupOut)
def get_user_location(
    user_id: int,
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> LocationLookupOut:
    try:
        return _lookup_out(tracker.get_user_location(db, user_id))
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/connections/{connection_id}", response_model=GroupLocationsOut)
def get_group_locations(
    connection_id: int,
    user_id: Optional[int] = Query(None, description="requesting member; must belong to the connection"),
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> GroupLocationsOut:
    try:
        views = tracker.get_group_locations(db, connection_id, requester_id=user_id)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    return GroupLocationsOut(
        connection_id=connection_id,
        members=[
            MemberLocationOut(
                user_id=v.user_id,
                name=v.name,
                role=v.role,
                location=_lookup_out(v.location) if v.location is not None else None,
            )
            for v in views
        ],
    )


@router.get("/connections/{connection_id}/history", response_model=ConnectionHistoryOut)
def get_connection_history(
    connection_id: int,
    hours: Optional[float] = Query(None, gt=0, description="only points from the last N hours"),
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> ConnectionHistoryOut:
    try:
        history = tracker.get_connection_history(db, connection_id, hours=hours)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    members = []
    for member, user, points in history.members:
        members.append(
            MemberHistoryOut(
                user_id=user.id,
                name=user.name,
                online=bool(member.online),
                total_samples=member.total_samples or 0,
                avg_speed=member.avg_speed or 0.0,
                total_distance=member.total_distance or 0.0,
                last_active=member.last_active,
                history=[HistoryPointOut.model_validate(p) for p in points],
            )
        )
    stats = ConnectionStatsOut.model_validate(history.aggregate) if history.aggregate is not None else None
    return ConnectionHistoryOut(connection_id=connection_id, stats=stats, members=members)


@router.delete("/cleanup", response_model=CleanupOut)
def delete_history_cleanup(
    keep: Optional[int] = Query(None, ge=1, description="points kept per member (default: configured history length)"),
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> CleanupOut:
    """Maintenance: trim every member's history."""
    try:
        trimmed = tracker.cleanup_history(db, keep=keep)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except SQLAlchemyError:
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to clean up location history")
    return CleanupOut(trimmed_members=trimmed, keep=keep if keep is not None else tracker.history_length)
