# In-process location cache: user_id -> latest sample, TTL-bounded, lock-striped

import logging
import os
import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

CACHE_TTL_MS = int(os.getenv("LOCATION_CACHE_TTL_MS", "120000"))
CACHE_SHARDS = 16


@dataclass(frozen=True)
class PositionSample:
    """One location ping. timestamp is epoch seconds, stamped by the server."""

    user_id: int
    latitude: float
    longitude: float
    timestamp: float
    online: bool = True
    floor: Optional[str] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    sequence: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CacheEntry:
    user_id: int
    sample: PositionSample
    inserted_at: float

    def age(self, now: float) -> float:
        return now - self.inserted_at


def is_out_of_order(current: PositionSample, incoming: PositionSample) -> bool:
    """True when both carry a client sequence and incoming is not newer."""
    if current.sequence is None or incoming.sequence is None:
        return False
    return incoming.sequence <= current.sequence


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: Dict[int, CacheEntry] = {}


class LocationCache:
    """
    Fast-path store of each user's latest position.

    Not the source of truth: entries expire after ttl_ms and are evicted by
    sweep(). Keys are spread over lock-protected shards, so every keyed
    operation is atomic while pings for different users don't contend.
    Ordering across different users is not guaranteed.

    The clock is injectable (epoch seconds) for tests.
    """

    def __init__(
        self,
        ttl_ms: int = CACHE_TTL_MS,
        clock: Callable[[], float] = time.time,
        shards: int = CACHE_SHARDS,
    ):
        self.ttl = ttl_ms / 1000.0
        self._clock = clock
        self._shards = [_Shard() for _ in range(max(1, shards))]

    def _shard(self, user_id: int) -> _Shard:
        return self._shards[hash(user_id) % len(self._shards)]

    def now(self) -> float:
        return self._clock()

    def put(self, user_id: int, sample: PositionSample) -> CacheEntry:
        """Unconditionally overwrite the user's entry and stamp insertion time."""
        shard = self._shard(user_id)
        with shard.lock:
            entry = CacheEntry(user_id=user_id, sample=sample, inserted_at=self._clock())
            shard.entries[user_id] = entry
        return entry

    def put_if_newer(self, user_id: int, sample: PositionSample) -> Optional[CacheEntry]:
        """
        Like put(), but refuses a sample whose sequence is not greater than the
        cached one (duplicate / out-of-order retry). Returns None when refused.
        """
        shard = self._shard(user_id)
        with shard.lock:
            current = shard.entries.get(user_id)
            if current is not None and is_out_of_order(current.sample, sample):
                return None
            entry = CacheEntry(user_id=user_id, sample=sample, inserted_at=self._clock())
            shard.entries[user_id] = entry
        return entry

    def get(self, user_id: int) -> Optional[CacheEntry]:
        shard = self._shard(user_id)
        with shard.lock:
            return shard.entries.get(user_id)

    def get_fresh(self, user_id: int) -> Optional[CacheEntry]:
        """Entry if it exists and is within TTL, else None."""
        entry = self.get(user_id)
        if entry is None or entry.age(self._clock()) > self.ttl:
            return None
        return entry

    def is_fresh(self, user_id: int) -> bool:
        return self.get_fresh(user_id) is not None

    def mark_offline(self, user_id: int) -> Optional[CacheEntry]:
        """Flip online=False on the cached sample. Keeps inserted_at; never evicts."""
        shard = self._shard(user_id)
        with shard.lock:
            entry = shard.entries.get(user_id)
            if entry is None:
                return None
            entry = replace(entry, sample=replace(entry.sample, online=False))
            shard.entries[user_id] = entry
        return entry

    def sweep(self) -> List[int]:
        """Evict every entry older than TTL. Returns evicted user ids."""
        now = self._clock()
        evicted: List[int] = []
        remaining = 0
        for shard in self._shards:
            with shard.lock:
                expired = [uid for uid, entry in shard.entries.items() if entry.age(now) > self.ttl]
                for uid in expired:
                    del shard.entries[uid]
                remaining += len(shard.entries)
            evicted.extend(expired)

        if evicted:
            logger.info("Cache sweep evicted %d stale entries, %d remain", len(evicted), remaining)
        else:
            logger.debug("Cache sweep found no stale entries, %d in cache", remaining)
        return evicted

    def snapshot(self) -> List[CacheEntry]:
        entries: List[CacheEntry] = []
        for shard in self._shards:
            with shard.lock:
                entries.extend(shard.entries.values())
        return entries

    def status(self) -> Dict[str, Any]:
        """Diagnostics: totals plus per-user age / activity."""
        now = self._clock()
        users = []
        active = 0
        for entry in sorted(self.snapshot(), key=lambda e: e.user_id):
            age = entry.age(now)
            is_active = age <= self.ttl
            active += int(is_active)
            users.append(
                {
                    "user_id": entry.user_id,
                    "inserted_at": entry.inserted_at,
                    "seconds_since_update": int(round(age)),
                    "is_active": is_active,
                    "online": entry.sample.online,
                }
            )
        return {
            "total_cached": len(users),
            "active": active,
            "stale": len(users) - active,
            "users": users,
        }

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)
