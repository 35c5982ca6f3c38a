# SSE endpoints: one Redis room per stream

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from app.realtime.sse_pubsub import connection_room, stream_room_events, user_room

router = APIRouter(tags=["Realtime"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/connections/{connection_id}/stream")
async def get_connection_stream(connection_id: int):
    """SSE: location_updated / waypoint_updated / ownership_transferred for one connection."""
    return StreamingResponse(
        stream_room_events(connection_room(connection_id)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/users/{user_id}/stream")
async def get_user_stream(user_id: int):
    """SSE: active_waypoints_updated for one user."""
    return StreamingResponse(
        stream_room_events(user_room(user_id)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
