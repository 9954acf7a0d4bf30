from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import redis.asyncio as aioredis

from ..modules.classifier import AttackType, classify
from .alerts import AlertSender
from .audit import JsonLogSink, LogSink, RequestLogRecord
from .blocklist import Blocklist, BlockStatus, RedisBlocklist
from .config import MonitorConfig, SharedBackend
from .errors import BackendError, NotBlockedError
from .events import AttackEvent, AttackHandler, EventChannel
from .logging_system import LoggerFactory
from .tracking_store import EphemeralTrackingStore, RedisTrackingStore, TrackingStore


@dataclass
class Stats:
    blocked_ips: "OrderedDict[str, int]" = field(default_factory=OrderedDict)
    attacks: Dict[str, int] = field(default_factory=dict)
    backend_errors: int = 0
    # Most recently blocked clients kept in blocked_ips
    max_blocked_ips: int = 1000

    def count_block(self, identity: str, attack_type: str) -> None:
        self.blocked_ips[identity] = self.blocked_ips.pop(identity, 0) + 1
        while len(self.blocked_ips) > self.max_blocked_ips:
            self.blocked_ips.popitem(last=False)
        self.attacks[attack_type] = self.attacks.get(attack_type, 0) + 1


class DetectionEngine:
    """Per-request detection pipeline.

    ``gate`` is the first stage and only reads the blocklist.  ``inspect`` is
    the second stage: it counts the request, classifies the client and, on a
    verdict, blocks it, resets its window and emits one ``AttackEvent``.  The
    request that trips a threshold is let through unless
    ``detection.enforce_on_trigger`` is set.
    """

    def __init__(self, config: Optional[MonitorConfig] = None, *,
                 store: Optional[TrackingStore] = None,
                 blocklist: Any = None,
                 events: Optional[EventChannel] = None,
                 sink: Optional[LogSink] = None,
                 redis_client: Any = None,
                 clock: Callable[[], float] = time.time) -> None:
        self.cfg = config if config is not None else MonitorConfig()
        self.clock = clock
        self.logger = LoggerFactory.get_logger(
            "apiguard",
            level=self.cfg.logging.level,
            json_mode=self.cfg.logging.json,
            log_dir=self.cfg.logging.log_dir,
            file_name=self.cfg.logging.file_name,
            max_mb=self.cfg.logging.max_mb,
            backups=self.cfg.logging.backups,
        ).getChild("engine")
        self.stats = Stats()
        self.events = events if events is not None else EventChannel()
        self._redis = None
        self._last_sweep = self.clock()

        backend = self.cfg.backend
        if isinstance(backend, SharedBackend) and (store is None or blocklist is None):
            if redis_client is None:
                redis_client = aioredis.from_url(backend.url, decode_responses=True)
                self._redis = redis_client
            if store is None:
                store = RedisTrackingStore(redis_client, window_seconds=self.cfg.detection.time_window,
                                           key_prefix=backend.key_prefix, atomic=backend.atomic)
            if blocklist is None:
                blocklist = RedisBlocklist(redis_client, key_prefix=backend.key_prefix)
        if store is None:
            store = EphemeralTrackingStore(window_seconds=self.cfg.detection.time_window,
                                           max_identities=backend.max_identities,
                                           lock_shards=backend.lock_shards)
        self.store = store
        self.blocklist = blocklist if blocklist is not None else Blocklist()

        self._sink = sink
        self.alerts = AlertSender(self.cfg.alerts)
        if self.alerts.enabled:
            self.events.subscribe(self.alerts)

        self.logger.info("Detection engine ready (backend=%s max_requests=%s window=%ss scan_threshold=%s)",
                         "redis" if isinstance(backend, SharedBackend) else "memory",
                         self.cfg.detection.max_requests, self.cfg.detection.time_window,
                         self.cfg.detection.scan_threshold)

    @property
    def sink(self) -> LogSink:
        if self._sink is None:
            self._sink = JsonLogSink(self.cfg.audit)
        return self._sink

    def on_attack_detected(self, handler: AttackHandler) -> AttackHandler:
        return self.events.subscribe(handler)

    async def gate(self, identity: str, now: Optional[float] = None) -> Optional[BlockStatus]:
        """Return the active block for ``identity``, or None to let it through."""
        t = now if now is not None else self.clock()
        try:
            if not await self.blocklist.is_blocked(identity, t):
                return None
            return await self.blocklist.describe(identity, t)
        except NotBlockedError:
            # Expired between the two calls
            return None
        except BackendError as e:
            self.stats.backend_errors += 1
            self.logger.error("Blocklist unavailable, letting %s through: %s", identity, e)
            return None

    async def inspect(self, identity: str, route: str, now: Optional[float] = None) -> Optional[AttackType]:
        t = now if now is not None else self.clock()
        det = self.cfg.detection
        if t - self._last_sweep >= det.time_window:
            self.sweep(t)
        try:
            request_count, route_count = await self.store.record_and_count(identity, route, t)
        except BackendError as e:
            self.stats.backend_errors += 1
            self.logger.error("Tracking store unavailable, skipping classification for %s: %s", identity, e)
            return None

        attack_type = classify(request_count, route_count, det.max_requests, det.scan_threshold)
        if attack_type is None:
            return None

        try:
            entry = await self.blocklist.block_if_absent(identity, attack_type, t, det.block_seconds)
            await self.store.clear(identity)
        except BackendError as e:
            self.stats.backend_errors += 1
            self.logger.error("Could not block %s for %s: %s", identity, attack_type, e)
            return attack_type
        if entry is None:
            # Another request or instance already handled this transition
            return attack_type

        self.on_block(identity, attack_type, t, request_count, route_count)
        return attack_type

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop idle windows and expired blocks. Runs from ``inspect`` once per window."""
        t = now if now is not None else self.clock()
        self._last_sweep = t
        dropped = self.store.sweep(t) + self.blocklist.sweep(t)
        if dropped:
            self.logger.debug("Housekeeping dropped %s idle entries", dropped)
        return dropped

    def on_block(self, identity: str, attack_type: AttackType, now: float,
                 request_count: int, route_count: int) -> None:
        self.stats.count_block(identity, attack_type.value)
        self.logger.warning("Possible attack detected: %s from IP %s (requests=%s routes=%s), blocked for %ss",
                            attack_type, identity, request_count, route_count,
                            self.cfg.detection.block_seconds)
        self.events.emit(AttackEvent(identity, attack_type.value,
                                     datetime.fromtimestamp(now, tz=timezone.utc)))

    def should_record(self, attack_type: Optional[str]) -> bool:
        return self.cfg.audit.save_records or attack_type is not None

    def record(self, record: RequestLogRecord) -> bool:
        """Hand ``record`` to the audit sink. Failures are logged, never raised."""
        try:
            self.sink.append(record)
            return True
        except Exception:
            self.logger.exception("Error saving request log for %s %s", record.method, record.route)
            return False

    async def close(self) -> None:
        await self.store.close()
        await self.blocklist.close()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self.logger.info("Detection engine stopped")
