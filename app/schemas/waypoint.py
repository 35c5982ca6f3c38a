# Waypoint / ownership API request/response schemas

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WaypointTypeLiteral = Literal["bus_station", "hotel"]
WaypointScopeLiteral = Literal["personal", "group"]
TransferPolicyLiteral = Literal["use_personal_as_group", "keep_previous_as_group"]


class MarkWaypointBody(BaseModel):
    """Mark a bus station / hotel. scope=group is only accepted from the owner."""

    user_id: int
    type: WaypointTypeLiteral
    scope: WaypointScopeLiteral = "personal"
    name: str = Field(..., min_length=1, max_length=100)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    comment: str = Field(..., min_length=1, max_length=500)
    distance: float = Field(default=0.0, ge=0)
    room_number: Optional[str] = Field(default=None, max_length=20)
    images: List[str] = Field(default_factory=list)


class UpdateWaypointBody(BaseModel):
    """Unset fields stay unchanged."""

    comment: Optional[str] = Field(default=None, max_length=500)
    images: Optional[List[str]] = None


class TransferOwnershipBody(BaseModel):
    current_owner_id: int
    new_owner_id: int
    # per-type policy; a missing type falls back to keep_previous_as_group
    choices: Dict[WaypointTypeLiteral, TransferPolicyLiteral] = Field(default_factory=dict)


class WaypointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    connection_id: int
    type: WaypointTypeLiteral
    scope: WaypointScopeLiteral
    scope_user_id: Optional[int] = None
    name: str
    latitude: float
    longitude: float
    comment: Optional[str] = None
    distance: float = 0.0
    room_number: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    marked_by: Optional[int] = None
    is_owner_marked: bool
    marked_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActiveWaypointOut(BaseModel):
    """Resolved waypoint for one viewer; name is 'Unmarked' when nothing applies."""

    model_config = ConfigDict(from_attributes=True)

    type: WaypointTypeLiteral
    source: Literal["personal", "group", "unmarked"]
    is_marked: bool
    waypoint_id: Optional[int] = None
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    comment: Optional[str] = None
    distance: Optional[float] = None
    room_number: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    marked_by: Optional[int] = None
    marked_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActiveWaypointsOut(BaseModel):
    connection_id: int
    user_id: int
    is_owner: bool
    bus_station: ActiveWaypointOut
    hotel: ActiveWaypointOut


class SyncReportOut(BaseModel):
    synced: List[int]
    failed: Dict[int, str]
    broadcast_failed: Dict[int, str]
    ok: bool


class WaypointChangeOut(BaseModel):
    message: str
    waypoint: Optional[WaypointOut] = None
    sync: SyncReportOut


class TransferOwnershipOut(BaseModel):
    message: str
    connection_id: int
    new_owner_id: int
    outcomes: Dict[str, str]
    sync: SyncReportOut
