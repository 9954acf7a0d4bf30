from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI

from .core.engine import DetectionEngine
from .core.events import AttackEvent
from .core.middleware import install


def create_app(engine: DetectionEngine) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await engine.close()

    app = FastAPI(title="apiguard demo", description="Sample API behind the apiguard middleware",
                  lifespan=lifespan)
    install(app, engine)

    @engine.on_attack_detected
    def log_attack(event: AttackEvent) -> None:
        engine.logger.info("Attack detected: %s", event.to_dict())

    @app.get("/")
    def root() -> Dict[str, Any]:
        return {"message": "API working correctly"}

    @app.get("/api/users")
    def users() -> Dict[str, Any]:
        return {"users": []}

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "service": "apiguard"}

    return app
