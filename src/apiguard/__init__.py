"""Inline abuse detection for ASGI apps: rate and path-scan detection with temporary IP blocks."""

from .core.blocklist import Blocklist, BlockStatus, RedisBlocklist
from .core.config import ConfigLoader, EphemeralBackend, MonitorConfig, SharedBackend
from .core.engine import DetectionEngine
from .core.errors import ApiGuardError, BackendError, ConfigurationError, NotBlockedError
from .core.events import AttackEvent, EventChannel
from .core.middleware import BlockGateMiddleware, MonitorMiddleware, install
from .core.tracking_store import EphemeralTrackingStore, RedisTrackingStore
from .modules.classifier import AttackType, classify
from .modules.identity import resolve_client_ip

__version__ = "1.2.0"

__all__ = [
    "ApiGuardError",
    "AttackEvent",
    "AttackType",
    "BackendError",
    "BlockGateMiddleware",
    "BlockStatus",
    "Blocklist",
    "ConfigLoader",
    "ConfigurationError",
    "DetectionEngine",
    "EphemeralBackend",
    "EphemeralTrackingStore",
    "EventChannel",
    "MonitorConfig",
    "MonitorMiddleware",
    "NotBlockedError",
    "RedisBlocklist",
    "RedisTrackingStore",
    "SharedBackend",
    "classify",
    "install",
    "resolve_client_ip",
]
