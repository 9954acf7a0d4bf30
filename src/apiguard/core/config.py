from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError


@dataclass
class DetectionConfig:
    max_requests: int = 10
    time_window: int = 60
    scan_threshold: int = 5
    block_seconds: int = 300
    # Deny the request that trips a threshold instead of starting with the next one
    enforce_on_trigger: bool = False

    def __post_init__(self) -> None:
        for name in ("max_requests", "time_window", "scan_threshold", "block_seconds"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigurationError(f"detection.{name} must be a positive integer, got {value!r}")


@dataclass(frozen=True)
class EphemeralBackend:
    max_identities: int = 10_000
    lock_shards: int = 16

    def __post_init__(self) -> None:
        if self.lock_shards < 1:
            raise ConfigurationError("backend.lock_shards must be at least 1")
        if self.max_identities < self.lock_shards:
            raise ConfigurationError("backend.max_identities must be >= backend.lock_shards")


@dataclass(frozen=True)
class SharedBackend:
    url: str
    key_prefix: str = "apiguard"
    atomic: bool = False

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("shared backend requires backend.redis.url (or REDIS_URL)")


BackendConfig = Union[EphemeralBackend, SharedBackend]


@dataclass
class AuditConfig:
    save_records: bool = False
    log_dir: str = "logs"
    file_name: str = "requests.jsonl"
    max_mb: int = 10
    backups: int = 5


@dataclass
class AlertConfig:
    discord_webhook_url: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    timeout: int = 10


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False
    log_dir: Optional[str] = None
    file_name: str = "apiguard.log"
    max_mb: int = 10
    backups: int = 5


@dataclass
class MonitorConfig:
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    backend: BackendConfig = field(default_factory=EphemeralBackend)
    audit: AuditConfig = field(default_factory=AuditConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def uses_shared_backend(self) -> bool:
        return isinstance(self.backend, SharedBackend)


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}") from None


class ConfigLoader:
    @staticmethod
    def from_yaml(path: str) -> MonitorConfig:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: top level must be a mapping")
        return ConfigLoader.from_dict(data)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> MonitorConfig:
        def section(d: Dict[str, Any], key: str) -> Dict[str, Any]:
            val = d.get(key)
            if val is None:
                return {}
            if not isinstance(val, dict):
                raise ConfigurationError(f"'{key}' must be a mapping")
            return val

        detection = section(data, "detection")
        backend = section(data, "backend")
        redis = section(backend, "redis")
        audit = section(data, "audit")
        alerts = section(data, "alerts")
        server = section(data, "server")
        logging = section(data, "logging")

        # Environment overrides (APIGUARD_* plus the conventional REDIS_URL)
        use_shared = _env_bool("APIGUARD_USE_SHARED_BACKEND", bool(backend.get("use_shared_backend", False)))
        if use_shared:
            backend_cfg: BackendConfig = SharedBackend(
                url=redis.get("url") or os.getenv("REDIS_URL") or "",
                key_prefix=redis.get("key_prefix", "apiguard"),
                atomic=bool(redis.get("atomic", False)),
            )
        else:
            backend_cfg = EphemeralBackend(
                max_identities=backend.get("max_identities", 10_000),
                lock_shards=backend.get("lock_shards", 16),
            )

        return MonitorConfig(
            detection=DetectionConfig(
                max_requests=_env_int("APIGUARD_MAX_REQUESTS", detection.get("max_requests", 10)),
                time_window=_env_int("APIGUARD_TIME_WINDOW", detection.get("time_window", 60)),
                scan_threshold=_env_int("APIGUARD_SCAN_THRESHOLD", detection.get("scan_threshold", 5)),
                block_seconds=detection.get("block_seconds", 300),
                enforce_on_trigger=bool(detection.get("enforce_on_trigger", False)),
            ),
            backend=backend_cfg,
            audit=AuditConfig(
                save_records=_env_bool("APIGUARD_SAVE_RECORDS", bool(audit.get("save_records", False))),
                log_dir=audit.get("log_dir", "logs"),
                file_name=audit.get("file_name", "requests.jsonl"),
                max_mb=audit.get("max_mb", 10),
                backups=audit.get("backups", 5),
            ),
            alerts=AlertConfig(
                discord_webhook_url=alerts.get("discord_webhook_url"),
                slack_webhook_url=alerts.get("slack_webhook_url"),
                timeout=alerts.get("timeout", 10),
            ),
            server=ServerConfig(
                host=server.get("host", "0.0.0.0"),
                port=server.get("port", 8000),
            ),
            logging=LoggingConfig(
                level=logging.get("level", "INFO"),
                json=logging.get("json", False),
                log_dir=logging.get("log_dir"),
                file_name=logging.get("file_name", "apiguard.log"),
                max_mb=logging.get("max_mb", 10),
                backups=logging.get("backups", 5),
            ),
        )
