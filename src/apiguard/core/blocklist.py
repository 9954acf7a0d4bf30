from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from .errors import BackendError, NotBlockedError

DEFAULT_BLOCK_SECONDS = 300


@dataclass(frozen=True)
class BlockEntry:
    identity: str
    reason: str
    expires_at: float

    def active(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class BlockStatus:
    reason: str
    remaining_seconds: int
    expires_at: datetime

    @classmethod
    def at(cls, reason: str, now: float, expires_at: float) -> "BlockStatus":
        return cls(
            reason=reason,
            remaining_seconds=max(0, math.ceil(expires_at - now)),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": "Access denied due to suspicious activity",
            "reason": self.reason,
            "blockedFor": f"{self.remaining_seconds} seconds",
            "blockedUntil": self.expires_at.isoformat(),
        }


class Blocklist:
    """In-process temporary bans, one entry per client.

    Expired entries are dropped lazily when they are next looked at, and in
    bulk by ``sweep`` for clients that never come back.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, BlockEntry] = {}
        self._lock = threading.Lock()

    def _active_entry(self, identity: str, now: float) -> Optional[BlockEntry]:
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None:
                return None
            if not entry.active(now):
                self._entries.pop(identity, None)
                return None
            return entry

    async def is_blocked(self, identity: str, now: Optional[float] = None) -> bool:
        t = now if now is not None else time.time()
        return self._active_entry(identity, t) is not None

    async def block(self, identity: str, reason: str, now: Optional[float] = None,
                    duration: int = DEFAULT_BLOCK_SECONDS) -> BlockEntry:
        t = now if now is not None else time.time()
        entry = BlockEntry(identity, str(reason), t + duration)
        with self._lock:
            self._entries[identity] = entry
        return entry

    async def block_if_absent(self, identity: str, reason: str, now: Optional[float] = None,
                              duration: int = DEFAULT_BLOCK_SECONDS) -> Optional[BlockEntry]:
        """Block ``identity`` unless it already has an active block. Returns None in that case."""
        t = now if now is not None else time.time()
        with self._lock:
            current = self._entries.get(identity)
            if current is not None and current.active(t):
                return None
            entry = BlockEntry(identity, str(reason), t + duration)
            self._entries[identity] = entry
        return entry

    async def describe(self, identity: str, now: Optional[float] = None) -> BlockStatus:
        t = now if now is not None else time.time()
        entry = self._active_entry(identity, t)
        if entry is None:
            raise NotBlockedError(identity)
        return BlockStatus.at(entry.reason, t, entry.expires_at)

    def sweep(self, now: Optional[float] = None) -> int:
        t = now if now is not None else time.time()
        with self._lock:
            expired = [k for k, entry in self._entries.items() if not entry.active(t)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisBlocklist:
    """Bans stored as ``<prefix>:blocked:<ip>`` keys that expire on their own."""

    def __init__(self, client: Any, *, key_prefix: str = "apiguard") -> None:
        self.client = client
        self.prefix = key_prefix

    def _key(self, identity: str) -> str:
        return f"{self.prefix}:blocked:{identity}"

    async def is_blocked(self, identity: str, now: Optional[float] = None) -> bool:
        try:
            return bool(await self.client.exists(self._key(identity)))
        except RedisError as e:
            raise BackendError(f"is_blocked failed for {identity}: {e}") from e

    async def block(self, identity: str, reason: str, now: Optional[float] = None,
                    duration: int = DEFAULT_BLOCK_SECONDS) -> BlockEntry:
        t = now if now is not None else time.time()
        try:
            await self.client.set(self._key(identity), str(reason), ex=duration)
        except RedisError as e:
            raise BackendError(f"block failed for {identity}: {e}") from e
        return BlockEntry(identity, str(reason), t + duration)

    async def block_if_absent(self, identity: str, reason: str, now: Optional[float] = None,
                              duration: int = DEFAULT_BLOCK_SECONDS) -> Optional[BlockEntry]:
        t = now if now is not None else time.time()
        try:
            created = await self.client.set(self._key(identity), str(reason), ex=duration, nx=True)
        except RedisError as e:
            raise BackendError(f"block failed for {identity}: {e}") from e
        if not created:
            return None
        return BlockEntry(identity, str(reason), t + duration)

    async def describe(self, identity: str, now: Optional[float] = None) -> BlockStatus:
        t = now if now is not None else time.time()
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.get(self._key(identity))
            pipe.pttl(self._key(identity))
            reason, pttl = await pipe.execute()
        except RedisError as e:
            raise BackendError(f"describe failed for {identity}: {e}") from e
        if reason is None or pttl is None or pttl < 0:
            raise NotBlockedError(identity)
        if isinstance(reason, bytes):
            reason = reason.decode("utf-8")
        return BlockStatus.at(reason, t, t + pttl / 1000.0)

    def sweep(self, now: Optional[float] = None) -> int:
        # Keys expire on their own
        return 0

    async def close(self) -> None:
        # The client belongs to whoever created it
        return None
