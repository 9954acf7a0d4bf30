from __future__ import annotations

import argparse
import os
import sys

import uvicorn

from .app import create_app
from .core.config import ConfigLoader, MonitorConfig
from .core.engine import DetectionEngine
from .core.errors import ConfigurationError
from .core.logging_system import LoggerFactory


def load_config(path: str) -> MonitorConfig:
    if os.path.exists(path):
        return ConfigLoader.from_yaml(path)
    # Defaults plus environment overrides
    return ConfigLoader.from_dict({})


def main(argv=None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = argparse.ArgumentParser(description="apiguard - request abuse detection demo server")
    parser.add_argument("--config", "-c", default=os.path.join("config", "config.yaml"), help="Path to YAML config")
    parser.add_argument("--host", help="Override server.host")
    parser.add_argument("--port", type=int, help="Override server.port")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigurationError as e:
        print(f"apiguard: {e}", file=sys.stderr)
        return 2

    logger = LoggerFactory.get_logger("apiguard", level=cfg.logging.level, json_mode=cfg.logging.json,
                                      log_dir=cfg.logging.log_dir, file_name=cfg.logging.file_name,
                                      max_mb=cfg.logging.max_mb, backups=cfg.logging.backups)
    host = args.host or cfg.server.host
    port = args.port or cfg.server.port

    engine = DetectionEngine(cfg)
    app = create_app(engine)
    logger.info("Serving demo API at http://%s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level=cfg.logging.level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
