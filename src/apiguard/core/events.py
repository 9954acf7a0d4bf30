from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List

from .logging_system import LoggerFactory


@dataclass(frozen=True)
class AttackEvent:
    identity: str
    attack_type: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.identity,
            "type": str(self.attack_type),
            "timestamp": self.timestamp.isoformat(),
        }


AttackHandler = Callable[[AttackEvent], Any]


class EventChannel:
    """Synchronous observer registry for attack detections.

    Handlers run in subscription order on the caller's thread.  A handler
    that raises is logged and skipped; the rest still run and the request
    carries on.
    """

    def __init__(self) -> None:
        self.logger = LoggerFactory.get_logger("apiguard.events")
        self._handlers: List[AttackHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: AttackHandler) -> AttackHandler:
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: AttackHandler) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def emit(self, event: AttackEvent) -> int:
        """Deliver to every handler. Returns the number that completed."""
        with self._lock:
            handlers = list(self._handlers)
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                self.logger.exception("Attack handler %r failed for %s", handler, event.identity)
        return delivered

    def __len__(self) -> int:
        return len(self._handlers)
