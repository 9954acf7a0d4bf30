"""Tests for the demo app and CLI config loading."""

from fastapi.testclient import TestClient

from apiguard.app import create_app
from apiguard.core.config import MonitorConfig
from apiguard.core.engine import DetectionEngine
from apiguard.main import load_config
from conftest import ListSink, make_config


class TestDemoApp:
    def test_routes_are_served_behind_the_middleware(self):
        engine = DetectionEngine(make_config(max_requests=3), sink=ListSink())
        with TestClient(create_app(engine)) as client:
            assert client.get("/health").json() == {"status": "ok", "service": "apiguard"}
            assert client.get("/api/users").json() == {"users": []}
            assert client.get("/").status_code == 200
            client.get("/")
            assert client.get("/").status_code == 403
        assert len(engine.events) == 1


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path, monkeypatch):
        for name in ("REDIS_URL", "APIGUARD_USE_SHARED_BACKEND", "APIGUARD_MAX_REQUESTS"):
            monkeypatch.delenv(name, raising=False)
        assert load_config(str(tmp_path / "nope.yaml")) == MonitorConfig()
