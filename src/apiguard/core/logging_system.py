from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    A mapping passed as ``extra={"extra": {...}}`` is merged into the object,
    which is how the audit sink writes its records.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            entry.update(fields)
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class LoggerFactory:
    """Builds the ``apiguard.*`` loggers.

    Component loggers are plain children that propagate to whatever the
    application configured.  Handlers are attached only when a level or a
    log directory is requested, and only once per logger name.
    """

    @staticmethod
    def get_logger(name: str, *, level: Optional[str] = None, json_mode: bool = False,
                   log_dir: Optional[str] = None, file_name: str = "apiguard.log",
                   max_mb: int = 10, backups: int = 5, console: bool = True) -> logging.Logger:
        logger = logging.getLogger(name)
        if logger.handlers or (level is None and log_dir is None):
            return logger

        logger.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))

        if json_mode:
            fmt: logging.Formatter = JsonFormatter()
        else:
            fmt = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

        if log_dir is not None:
            os.makedirs(log_dir, exist_ok=True)
            file_path = os.path.join(log_dir, file_name)
            handler = RotatingFileHandler(file_path, maxBytes=max_mb * 1024 * 1024, backupCount=backups)
            handler.setFormatter(fmt)
            logger.addHandler(handler)

        if console:
            stream = logging.StreamHandler()
            stream.setFormatter(fmt)
            logger.addHandler(stream)
        return logger
