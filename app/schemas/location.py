# Location API request/response schemas

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

LocationSourceLiteral = Literal["cache", "store"]


class LocationUpdateBody(BaseModel):
    """One location ping. The server stamps the timestamp."""

    user_id: int
    connection_id: int
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    floor: Optional[str] = Field(default=None, max_length=20)
    accuracy: Optional[float] = Field(default=None, ge=0)
    speed: Optional[float] = Field(default=None, ge=0)
    heading: Optional[float] = Field(default=None, ge=0, lt=360)
    # client-side monotonic counter; retries with an already-seen value are ignored
    sequence: Optional[int] = Field(default=None, ge=0)


class OfflineBody(BaseModel):
    user_id: int


class PositionSampleOut(BaseModel):
    user_id: int
    latitude: float
    longitude: float
    timestamp: float
    online: bool
    floor: Optional[str] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    sequence: Optional[int] = None


class LocationUpdateOut(BaseModel):
    sample: PositionSampleOut
    persisted: bool
    duplicate: bool = False
    error: Optional[str] = None


class LocationLookupOut(BaseModel):
    """Hybrid read result: the cache when fresh, otherwise the durable store."""

    sample: PositionSampleOut
    source: LocationSourceLiteral
    is_stale: bool


class MemberLocationOut(BaseModel):
    user_id: int
    name: str
    role: str
    location: Optional[LocationLookupOut] = None


class GroupLocationsOut(BaseModel):
    connection_id: int
    members: List[MemberLocationOut]


class OfflineOut(BaseModel):
    user_id: int
    cached: bool
    connection_ids: List[int]
    persisted: bool = True
    error: Optional[str] = None


class CachedUserOut(BaseModel):
    user_id: int
    inserted_at: float
    seconds_since_update: int
    is_active: bool
    online: bool


class MemoryStatusOut(BaseModel):
    total_cached: int
    active: int
    stale: int
    users: List[CachedUserOut]


class HistoryPointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    latitude: float
    longitude: float
    floor: Optional[str] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    recorded_at: datetime


class MemberHistoryOut(BaseModel):
    user_id: int
    name: str
    online: bool
    total_samples: int
    avg_speed: float
    total_distance: float
    last_active: Optional[datetime] = None
    history: List[HistoryPointOut]


class ConnectionStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    active_user_count: int
    total_samples: int
    total_users: int
    last_activity: Optional[datetime] = None


class ConnectionHistoryOut(BaseModel):
    connection_id: int
    stats: Optional[ConnectionStatsOut] = None
    members: List[MemberHistoryOut]


class CleanupOut(BaseModel):
    trimmed_members: int
    keep: int
