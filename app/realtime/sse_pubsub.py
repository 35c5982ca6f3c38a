# SSE + Redis Pub/Sub: real-time location / waypoint events
# publish(event, room, payload) -> Redis channel named after the room
# SSE subscribers stream one room each (connection:{id} or user:{id})

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.errors import BroadcastError

logger = logging.getLogger(__name__)

# Inside docker use the service name (redis), not localhost
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
HEARTBEAT_INTERVAL = float(os.getenv("SSE_HEARTBEAT_INTERVAL", "15"))

CONNECTION_ROOM_PREFIX = "connection:"
USER_ROOM_PREFIX = "user:"

# Events
LOCATION_UPDATED = "location_updated"
ACTIVE_WAYPOINTS_UPDATED = "active_waypoints_updated"
WAYPOINT_UPDATED = "waypoint_updated"
OWNERSHIP_TRANSFERRED = "ownership_transferred"

# Single module-level client (no new connection per publish)
redis_client = redis.from_url(REDIS_URL, decode_responses=True)


def connection_room(connection_id: int) -> str:
    return f"{CONNECTION_ROOM_PREFIX}{connection_id}"


def user_room(user_id: int) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


def _message(event: str, room: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event,
        "room": room,
        **payload,
        "ts": datetime.now(timezone.utc).isoformat(),
    }


class Publisher(Protocol):
    async def publish(self, event: str, room: str, payload: Dict[str, Any]) -> None:
        ...


class RedisPublisher:
    """Outbound real-time channel over Redis pub/sub."""

    def __init__(self, client: Any = None):
        self._client = client if client is not None else redis_client

    async def publish(self, event: str, room: str, payload: Dict[str, Any]) -> None:
        """Raises BroadcastError when Redis is unreachable; callers decide whether that is fatal."""
        data = json.dumps(_message(event, room, payload), ensure_ascii=False, default=str)
        try:
            await self._client.publish(room, data)
        except RedisError as exc:
            raise BroadcastError(f"Failed to publish {event} to {room}: {exc}") from exc


class InMemoryPublisher:
    """Publisher keeping events in a list. Used when Redis is disabled and in tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    async def publish(self, event: str, room: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, room, payload))

    def for_room(self, room: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(event, payload) for event, r, payload in self.events if r == room]


async def stream_room_events(room: str, client: Any = None) -> AsyncGenerator[str, None]:
    """
    SSE generator for one room. Forwards every published message as
    `event: <type>` and sends a comment heartbeat every HEARTBEAT_INTERVAL.
    Long-lived connection: subscription is always cleaned up.
    """
    client = client if client is not None else redis_client
    pubsub = client.pubsub()
    try:
        await pubsub.subscribe(room)
        last_heartbeat = datetime.now(timezone.utc).timestamp()

        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            now = datetime.now(timezone.utc).timestamp()
            if now - last_heartbeat >= HEARTBEAT_INTERVAL:
                yield ": ping\n\n"
                last_heartbeat = now
            if message and message.get("type") == "message":
                data = message.get("data") or ""
                try:
                    event_name = json.loads(data).get("type") or "message"
                except (ValueError, AttributeError):
                    event_name = "message"
                yield f"event: {event_name}\ndata: {data}\n\n"
    except asyncio.CancelledError:
        logger.debug("SSE stream for %s cancelled", room)
    finally:
        await pubsub.unsubscribe(room)
        await pubsub.close()
