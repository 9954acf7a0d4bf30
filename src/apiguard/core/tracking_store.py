from __future__ import annotations

import threading
import time
import zlib
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from redis.exceptions import RedisError

from .errors import BackendError
from .logging_system import LoggerFactory

Counts = Tuple[int, int]


class TrackingStore:
    """Per-client request window and route set.

    ``record_and_count`` registers one request to ``route`` and returns
    ``(request_count, distinct_route_count)`` for the trailing window.
    """

    async def record_and_count(self, identity: str, route: str, now: Optional[float] = None) -> Counts:
        raise NotImplementedError

    async def clear(self, identity: str) -> None:
        raise NotImplementedError

    def sweep(self, now: Optional[float] = None) -> int:
        return 0

    async def close(self) -> None:
        return None


class _Track:
    __slots__ = ("hits", "routes", "last_seen")

    def __init__(self) -> None:
        self.hits: Deque[float] = deque()
        self.routes: Dict[str, float] = {}
        self.last_seen = 0.0

    def prune(self, cutoff: float) -> None:
        q = self.hits
        while q and q[0] < cutoff:
            q.popleft()
        if self.routes:
            stale = [r for r, seen in self.routes.items() if seen < cutoff]
            for r in stale:
                del self.routes[r]


class _Shard:
    __slots__ = ("lock", "tracks", "capacity")

    def __init__(self, capacity: int) -> None:
        self.lock = threading.Lock()
        self.tracks: "OrderedDict[str, _Track]" = OrderedDict()
        self.capacity = capacity


class EphemeralTrackingStore(TrackingStore):
    """In-process store.

    Identities are spread over ``lock_shards`` shards by a stable hash; each
    shard has its own lock and LRU map, so unrelated clients rarely contend.
    Each shard holds at most ``max_identities // lock_shards`` clients and
    drops the least recently seen one when full.
    """

    def __init__(self, *, window_seconds: int, max_identities: int = 10_000, lock_shards: int = 16) -> None:
        self.window = window_seconds
        self.logger = LoggerFactory.get_logger("apiguard.tracking")
        per_shard = max(1, max_identities // lock_shards)
        self._shards: List[_Shard] = [_Shard(per_shard) for _ in range(lock_shards)]

    def _shard(self, identity: str) -> _Shard:
        return self._shards[zlib.crc32(identity.encode("utf-8")) % len(self._shards)]

    async def record_and_count(self, identity: str, route: str, now: Optional[float] = None) -> Counts:
        t = now if now is not None else time.time()
        cutoff = t - self.window
        shard = self._shard(identity)
        with shard.lock:
            track = shard.tracks.get(identity)
            if track is None:
                track = _Track()
                shard.tracks[identity] = track
                if len(shard.tracks) > shard.capacity:
                    evicted, _ = shard.tracks.popitem(last=False)
                    self.logger.debug("Evicted idle client %s (shard full)", evicted)
            else:
                shard.tracks.move_to_end(identity)
            track.prune(cutoff)
            track.hits.append(t)
            track.routes[route] = t
            track.last_seen = t
            return len(track.hits), len(track.routes)

    async def clear(self, identity: str) -> None:
        shard = self._shard(identity)
        with shard.lock:
            shard.tracks.pop(identity, None)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop clients with no request inside the window. Returns how many were dropped."""
        t = now if now is not None else time.time()
        cutoff = t - self.window
        dropped = 0
        for shard in self._shards:
            with shard.lock:
                idle = [k for k, track in shard.tracks.items() if track.last_seen < cutoff]
                for k in idle:
                    del shard.tracks[k]
                dropped += len(idle)
        if dropped:
            self.logger.debug("Swept %s idle clients", dropped)
        return dropped

    def __contains__(self, identity: object) -> bool:
        if not isinstance(identity, str):
            return False
        shard = self._shard(identity)
        with shard.lock:
            return identity in shard.tracks

    def __len__(self) -> int:
        return sum(len(s.tracks) for s in self._shards)


class RedisTrackingStore(TrackingStore):
    """Shared store on Redis native expiring keys.

    The counter and the route set each get a refreshing TTL of one window.
    By default the commands go out as one non-transactional pipeline, so a
    concurrent writer can slip between INCR and EXPIRE; counts are advisory
    so that is accepted.  ``atomic=True`` wraps the sequence in MULTI/EXEC.
    """

    def __init__(self, client: Any, *, window_seconds: int, key_prefix: str = "apiguard",
                 atomic: bool = False) -> None:
        self.client = client
        self.window = window_seconds
        self.prefix = key_prefix
        self.atomic = atomic

    def _keys(self, identity: str) -> Tuple[str, str]:
        return f"{self.prefix}:req_count:{identity}", f"{self.prefix}:scan_count:{identity}"

    async def record_and_count(self, identity: str, route: str, now: Optional[float] = None) -> Counts:
        request_key, scan_key = self._keys(identity)
        try:
            pipe = self.client.pipeline(transaction=self.atomic)
            pipe.incr(request_key, 1)
            pipe.expire(request_key, self.window)
            pipe.sadd(scan_key, route)
            pipe.expire(scan_key, self.window)
            pipe.scard(scan_key)
            count, _, _, _, routes = await pipe.execute()
        except RedisError as e:
            raise BackendError(f"record_and_count failed for {identity}: {e}") from e
        return int(count), int(routes)

    async def clear(self, identity: str) -> None:
        try:
            await self.client.delete(*self._keys(identity))
        except RedisError as e:
            raise BackendError(f"clear failed for {identity}: {e}") from e
