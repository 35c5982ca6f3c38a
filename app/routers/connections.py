# Connection API: waypoint marks, active waypoint resolution, ownership transfer
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crud.waypoint_crud import WaypointFields
from app.database import get_db
from app.errors import LocationError
from app.routers.deps import get_tracker
from app.schemas.waypoint import (
    ActiveWaypointOut,
    ActiveWaypointsOut,
    MarkWaypointBody,
    SyncReportOut,
    TransferOwnershipBody,
    TransferOwnershipOut,
    UpdateWaypointBody,
    WaypointChangeOut,
    WaypointOut,
)
from app.services.cache_sync import SyncReport
from app.services.location_tracker import LocationTracker

router = APIRouter(prefix="/connections", tags=["Connections"])


def _sync_out(report: SyncReport) -> SyncReportOut:
    return SyncReportOut(
        synced=sorted(report.synced),
        failed=report.failed,
        broadcast_failed=report.broadcast_failed,
        ok=report.ok,
    )


@router.get("/{connection_id}/waypoints", response_model=List[WaypointOut])
def get_waypoints(
    connection_id: int,
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> List[WaypointOut]:
    """All raw marks (personal and group) of a connection."""
    try:
        waypoints = tracker.list_waypoints(db, connection_id)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return [WaypointOut.model_validate(w) for w in waypoints]


@router.post("/{connection_id}/waypoints", response_model=WaypointChangeOut, status_code=201)
async def post_waypoint(
    connection_id: int,
    body: MarkWaypointBody,
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> WaypointChangeOut:
    """Mark a personal or group waypoint, then re-sync every member's active waypoints."""
    fields = WaypointFields(
        name=body.name,
        latitude=body.latitude,
        longitude=body.longitude,
        comment=body.comment,
        distance=body.distance,
        room_number=body.room_number,
        images=body.images,
    )
    try:
        change = await tracker.mark_waypoint(db, connection_id, body.user_id, body.type, body.scope, fields)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    return WaypointChangeOut(
        message="marked",
        waypoint=WaypointOut.model_validate(change.waypoint),
        sync=_sync_out(change.report),
    )


@router.get("/{connection_id}/waypoints/active", response_model=ActiveWaypointsOut)
def get_active_waypoints(
    connection_id: int,
    user_id: int = Query(..., description="viewer"),
    is_owner: Optional[bool] = Query(None, description="override the viewer's role (default: from membership)"),
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> ActiveWaypointsOut:
    """Which bus_station / hotel this viewer should see (personal > group > Unmarked; owners see group only)."""
    try:
        active = tracker.get_active_waypoints(db, connection_id, user_id, is_owner=is_owner)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    return ActiveWaypointsOut(
        connection_id=active.connection_id,
        user_id=active.user_id,
        is_owner=active.is_owner,
        bus_station=ActiveWaypointOut.model_validate(active.bus_station),
        hotel=ActiveWaypointOut.model_validate(active.hotel),
    )


@router.put("/waypoints/{waypoint_id}", response_model=WaypointChangeOut)
async def put_waypoint(
    waypoint_id: int,
    body: UpdateWaypointBody,
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> WaypointChangeOut:
    """Edit comment / images of a mark. Publishes waypoint_updated and re-syncs."""
    try:
        change = await tracker.update_waypoint(db, waypoint_id, comment=body.comment, images=body.images)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    return WaypointChangeOut(
        message="updated",
        waypoint=WaypointOut.model_validate(change.waypoint),
        sync=_sync_out(change.report),
    )


@router.delete("/waypoints/{waypoint_id}", response_model=WaypointChangeOut)
async def delete_waypoint(
    waypoint_id: int,
    user_id: int = Query(..., description="only the user who marked it may delete it"),
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> WaypointChangeOut:
    try:
        change = await tracker.delete_waypoint(db, waypoint_id, user_id)
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return WaypointChangeOut(message="deleted", sync=_sync_out(change.report))


@router.post("/{connection_id}/transfer-ownership", response_model=TransferOwnershipOut)
async def post_transfer_ownership(
    connection_id: int,
    body: TransferOwnershipBody,
    db: Session = Depends(get_db),
    tracker: LocationTracker = Depends(get_tracker),
) -> TransferOwnershipOut:
    """Swap owner roles, resolving bus_station / hotel conflicts per the chosen policy."""
    try:
        result = await tracker.transfer_ownership(
            db,
            connection_id,
            body.current_owner_id,
            body.new_owner_id,
            choices=dict(body.choices),
        )
    except LocationError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except SQLAlchemyError:
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to transfer ownership")

    return TransferOwnershipOut(
        message="transferred",
        connection_id=result.connection_id,
        new_owner_id=result.new_owner_id,
        outcomes=result.outcomes,
        sync=_sync_out(result.report),
    )
