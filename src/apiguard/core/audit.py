from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from .config import AuditConfig
from .logging_system import JsonFormatter


@dataclass(frozen=True)
class RequestLogRecord:
    ip: str
    method: str
    route: str
    timestamp: datetime
    response_time_ms: float
    status_code: int
    user_agent: Optional[str]
    attack_type: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class LogSink:
    """Where finished-request records go. ``append`` may block; callers run it off the event loop."""

    def append(self, record: RequestLogRecord) -> None:
        raise NotImplementedError


class JsonLogSink(LogSink):
    """One JSON object per line in a size-rotated file."""

    def __init__(self, cfg: AuditConfig, *, logger_name: str = "apiguard.audit.records") -> None:
        self.cfg = cfg
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        if not self.logger.handlers:
            os.makedirs(cfg.log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(cfg.log_dir, cfg.file_name),
                maxBytes=cfg.max_mb * 1024 * 1024,
                backupCount=cfg.backups,
            )
            handler.setFormatter(JsonFormatter())
            self.logger.addHandler(handler)

    def append(self, record: RequestLogRecord) -> None:
        self.logger.info("request", extra={"extra": record.to_dict()})

    def close(self) -> None:
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
